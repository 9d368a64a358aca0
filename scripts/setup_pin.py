import argparse
import getpass

from pinguard.config import load_config, setup_logging
from pinguard.flow import SetupStep
from pinguard.services import build_services


def main():
    parser = argparse.ArgumentParser(description="Create the device PIN (create -> confirm -> fingerprint).")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--config", default="config.yaml")
    args = parser.parse_args()

    cfg = load_config(args.config)
    setup_logging(cfg)
    svc = build_services(cfg)
    try:
        ctl = svc.controller()
        ctl.on_session_changed(args.user_id)
        flow = ctl.begin_pin_setup()

        while flow.step in (SetupStep.CREATE, SetupStep.CONFIRM):
            label = "Create your PIN" if flow.step is SetupStep.CREATE else "Confirm your PIN"
            res = flow.enter(getpass.getpass(f"{label} ({cfg.pin.length} digits): ").strip())
            if res.error is not None:
                print(f"[PIN SETUP] {res.error.message}")

        if flow.step is SetupStep.BIOMETRIC:
            answer = input("Enable fingerprint unlock? [y/N]: ").strip().lower()
            res = flow.enable_biometric() if answer == "y" else flow.skip_biometric()
            if res.error is not None:
                print(f"[PIN SETUP] {res.error.message}")

        state = ctl.complete_pin_setup(flow)
        print(f"PIN SETUP OK: user_id={args.user_id} next={state}")
    finally:
        svc.close()


if __name__ == "__main__":
    main()
