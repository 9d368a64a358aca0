import argparse

from pinguard.config import load_config
from pinguard.services import build_services


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--events", type=int, default=10, help="Number of audit rows to show")
    args = parser.parse_args()

    cfg = load_config("config.yaml")
    svc = build_services(cfg)
    try:
        ctl = svc.controller()

        st = svc.lockout.is_account_locked()
        settings = ctl.security_settings()
        info = svc.trust.get_device_info()

        print(f"[lockout] locked={st.is_locked} remaining={st.remaining_time}s failed_attempts={st.failed_attempts}")
        print(f"[pin] enabled={settings.pin_enabled} last_changed={settings.pin_last_changed} expired={settings.pin_expired}")
        print(f"[biometric] enabled={settings.biometric_enabled} capability={svc.biometric.get_biometric_capability()}")
        print(f"[device] id={info.device_id} name={info.device_name} type={info.device_type} new={svc.trust.is_new_device()}")
        for row in svc.audit.recent(args.events):
            print(f"  #{row['id']} {row['ts']} {row['event']} {row['outcome']} {row['reason']}")
    finally:
        svc.close()


if __name__ == "__main__":
    main()
