import getpass

from pinguard.config import load_config, setup_logging
from pinguard.errors import SecurityError
from pinguard.services import build_services


def main():
    cfg = load_config("config.yaml")
    setup_logging(cfg)
    svc = build_services(cfg)
    try:
        if not svc.credentials.has_pin():
            raise SystemExit("pin_not_configured")

        current = getpass.getpass("Enter current PIN: ").strip()
        new_pin1 = getpass.getpass("Enter new PIN: ").strip()
        new_pin2 = getpass.getpass("Re-enter new PIN: ").strip()
        if not new_pin1 or new_pin1 != new_pin2:
            raise SystemExit("pin_mismatch")

        try:
            svc.credentials.update_pin(current, new_pin1)
        except SecurityError as e:
            svc.audit.record("pin_change", "DENY", e.reason)
            raise SystemExit(e.reason)

        svc.audit.record("pin_change", "ALLOW", "pin_changed")
        print("PIN changed.")
    finally:
        svc.close()


if __name__ == "__main__":
    main()
