from __future__ import annotations

from typing import Optional


class SecurityError(RuntimeError):
    """
    Base class for every failure raised by the security layer.

    `reason` is a stable snake_case code for logs and audit rows.
    `message` is safe to show to the user.
    """

    reason = "security_error"
    default_message = "Security check failed. Please try again."

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.message = message or self.default_message
        if reason:
            self.reason = reason
        super().__init__(self.message)


class ValidationError(SecurityError):
    reason = "invalid_pin_format"
    default_message = "Invalid PIN format"


class NotConfiguredError(SecurityError):
    reason = "pin_not_configured"
    default_message = "PIN not found. Please set up your PIN."


class IncorrectCredentialError(SecurityError):
    reason = "current_pin_incorrect"
    default_message = "Current PIN is incorrect"


class LockedError(SecurityError):
    reason = "locked_out"

    def __init__(self, remaining_seconds: int, message: Optional[str] = None):
        self.remaining_seconds = max(0, int(remaining_seconds))
        if message is None:
            minutes = -(-self.remaining_seconds // 60)
            message = f"Too many failed attempts. Try again in {minutes} minutes."
        super().__init__(message)


class UnavailableError(SecurityError):
    reason = "biometric_unavailable"
    default_message = "Fingerprint authentication is not available on this device"


class StorageError(SecurityError):
    reason = "storage_unavailable"
    default_message = "Secure storage is unavailable. Please try again later."


class BiometricHardwareError(SecurityError):
    reason = "biometric_hardware_error"
    default_message = "Fingerprint sensor error. Please use your PIN."


class BusyError(SecurityError):
    reason = "operation_in_flight"
    default_message = "Please wait"
