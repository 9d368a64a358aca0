import argparse
import getpass

from pinguard.config import load_config, setup_logging
from pinguard.errors import LockedError
from pinguard.flow import AuthState
from pinguard.services import build_services


def main():
    parser = argparse.ArgumentParser(description="Run the app-launch authentication flow.")
    parser.add_argument("--user-id", default=None, help="Signed-in user; omit to simulate a signed-out session")
    parser.add_argument("--config", default="config.yaml")
    args = parser.parse_args()

    cfg = load_config(args.config)
    setup_logging(cfg)
    svc = build_services(cfg)
    try:
        _run(svc, args.user_id)
    finally:
        svc.close()


def _run(svc, user_id):
    ctl = svc.controller()

    state = ctl.on_session_changed(user_id)
    print(f"[STATE] {state} route={ctl.route}")

    while ctl.state in (AuthState.NEEDS_PIN, AuthState.NEW_DEVICE):
        status = ctl.lock_status()
        if status.is_locked:
            print(f"[ACCESS DENIED] locked remaining={status.remaining_time}s")
            break

        pin = getpass.getpass("Enter PIN: ").strip()
        res = ctl.submit_pin(pin)
        if res.accepted:
            break
        print(f"[ACCESS DENIED] reason={res.error.reason if res.error else None} attempts={res.failed_attempts}")
        if isinstance(res.error, LockedError):
            print(f"[LOCKED] {res.error.message}")
            break

    if ctl.state is AuthState.AUTHENTICATED:
        print(f"[ACCESS GRANTED] user={ctl.user_id} route={ctl.route}")
    elif ctl.state is AuthState.ERROR:
        print(f"[ERROR] {ctl.error_message}")
    else:
        print(f"[STATE] {ctl.state} route={ctl.route}")


if __name__ == "__main__":
    main()
