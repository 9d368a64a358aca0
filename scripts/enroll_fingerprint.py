import argparse
import time

from pinguard.config import load_config, setup_logging
from pinguard.fingerprint import FingerprintImagePlatform, compare_fingerprint


def main():
    parser = argparse.ArgumentParser(description="Enroll a fingerprint template from reader scans.")
    parser.add_argument("--name", required=True, help="Template name, e.g. right_index")
    parser.add_argument("--max-attempts", type=int, default=6, help="Max scan pairs for a usable template")
    parser.add_argument("--sleep-ms", type=int, default=250, help="Pause between scans (ms)")
    args = parser.parse_args()

    cfg = load_config("config.yaml")
    setup_logging(cfg)
    platform = FingerprintImagePlatform(cfg.biometric)

    if not platform.has_hardware():
        raise SystemExit("no_reader")

    # Two scans of the same finger must agree before the first one becomes the template.
    for i in range(1, args.max_attempts + 1):
        print(f"[ENROLL] attempt={i}/{args.max_attempts} place finger on reader (1/2)")
        first, err = platform.capture_scan()
        if first is None:
            raise SystemExit(f"enroll_aborted:{err.value if err else 'unknown'}")

        time.sleep(args.sleep_ms / 1000.0)
        print(f"[ENROLL] attempt={i}/{args.max_attempts} lift and place again (2/2)")
        second, err = platform.capture_scan()
        if second is None:
            raise SystemExit(f"enroll_aborted:{err.value if err else 'unknown'}")

        score = compare_fingerprint(first, second)
        print(f"[ENROLL] sanity_score={score:.3f} (threshold={cfg.biometric.score_threshold:.3f})")
        if score >= cfg.biometric.score_threshold:
            tpl = platform.enroll_template(first, args.name)
            print(f"ENROLL OK: template={tpl}")
            return

    raise SystemExit("enroll_failed_no_good_template")


if __name__ == "__main__":
    main()
