import argparse
import getpass

from pinguard.config import load_config, setup_logging
from pinguard.flow import SetupStep
from pinguard.services import build_services


def main():
    parser = argparse.ArgumentParser(description="Reset the PIN after the user re-verified by phone OTP.")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--otp-verified", action="store_true", help="Identity provider confirmed the OTP")
    args = parser.parse_args()

    if not args.otp_verified:
        raise SystemExit("otp_not_verified")

    cfg = load_config("config.yaml")
    setup_logging(cfg)
    svc = build_services(cfg)
    try:
        ctl = svc.controller()
        ctl.on_session_changed(args.user_id)

        flow = ctl.begin_pin_reset()
        while flow.step in (SetupStep.CREATE, SetupStep.CONFIRM):
            label = "Choose a new PIN" if flow.step is SetupStep.CREATE else "Confirm new PIN"
            res = flow.enter(getpass.getpass(f"{label}: ").strip())
            if res.error is not None:
                print(f"[PIN RESET] {res.error.message}")

        if flow.step is SetupStep.BIOMETRIC:
            flow.skip_biometric()

        state = ctl.complete_pin_setup(flow)
        print(f"PIN RESET OK: user_id={args.user_id} next={state}")
    finally:
        svc.close()


if __name__ == "__main__":
    main()
