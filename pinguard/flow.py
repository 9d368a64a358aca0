from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, List, Optional, Union

from .biometric import AuthenticationResult, AuthMethod, BiometricErrorKind, BiometricGate
from .credentials import PinCredentialStore, validate_pin
from .device import DeviceTrustRegistry
from .errors import (
    BiometricHardwareError,
    BusyError,
    IncorrectCredentialError,
    LockedError,
    NotConfiguredError,
    SecurityError,
    StorageError,
    UnavailableError,
    ValidationError,
)
from .lockout import LockoutPolicy, LockStatus
from .security import AuditTrail

logger = logging.getLogger(__name__)


class AuthState(Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    NO_PIN = "no-pin"
    NEW_DEVICE = "new-device"
    NEEDS_PIN = "needs-pin"
    DRIVER_INCOMPLETE = "driver-incomplete"
    AUTHENTICATED = "authenticated"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class Role(Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserProfile:
    role: Role = Role.PASSENGER
    registration_complete: bool = True


# -----------------------------
# Events
# -----------------------------
@dataclass(frozen=True)
class SessionChanged:
    user_id: Optional[str]


@dataclass(frozen=True)
class PinMissing:
    pass


@dataclass(frozen=True)
class DeviceUnrecognized:
    pass


@dataclass(frozen=True)
class BiometricSucceeded:
    pass


@dataclass(frozen=True)
class BiometricSkipped:
    pass


@dataclass(frozen=True)
class PinAccepted:
    pass


@dataclass(frozen=True)
class PinRejected:
    pass


@dataclass(frozen=True)
class PinSetupCompleted:
    pass


@dataclass(frozen=True)
class ProfileResolved:
    profile: UserProfile


@dataclass(frozen=True)
class EnvironmentFailed:
    message: str


Event = Union[
    SessionChanged,
    PinMissing,
    DeviceUnrecognized,
    BiometricSucceeded,
    BiometricSkipped,
    PinAccepted,
    PinRejected,
    PinSetupCompleted,
    ProfileResolved,
    EnvironmentFailed,
]

_PIN_PROMPT_STATES = (AuthState.NEEDS_PIN, AuthState.NEW_DEVICE)


def transition(state: AuthState, event: Event) -> AuthState:
    """
    Pure transition function of the login state machine.
    Pairs with no defined transition leave the state unchanged.
    """
    if isinstance(event, SessionChanged):
        return AuthState.UNAUTHENTICATED if event.user_id is None else AuthState.LOADING

    if state is AuthState.LOADING:
        if isinstance(event, PinMissing):
            return AuthState.NO_PIN
        if isinstance(event, DeviceUnrecognized):
            return AuthState.NEW_DEVICE
        if isinstance(event, BiometricSucceeded):
            return AuthState.AUTHENTICATED
        if isinstance(event, BiometricSkipped):
            return AuthState.NEEDS_PIN
        if isinstance(event, EnvironmentFailed):
            return AuthState.ERROR
        return state

    if state in _PIN_PROMPT_STATES:
        if isinstance(event, PinAccepted):
            return AuthState.AUTHENTICATED
        if isinstance(event, BiometricSucceeded) and state is AuthState.NEEDS_PIN:
            return AuthState.AUTHENTICATED
        if isinstance(event, PinMissing):
            return AuthState.NO_PIN
        if isinstance(event, EnvironmentFailed):
            return AuthState.ERROR
        return state

    if state is AuthState.NO_PIN:
        if isinstance(event, PinSetupCompleted):
            return AuthState.LOADING
        if isinstance(event, EnvironmentFailed):
            return AuthState.ERROR
        return state

    if state is AuthState.AUTHENTICATED:
        if isinstance(event, ProfileResolved):
            p = event.profile
            if p.role is Role.DRIVER and not p.registration_complete:
                return AuthState.DRIVER_INCOMPLETE
        if isinstance(event, PinMissing):
            return AuthState.NO_PIN
        return state

    if state is AuthState.DRIVER_INCOMPLETE:
        if isinstance(event, ProfileResolved) and event.profile.registration_complete:
            return AuthState.AUTHENTICATED
        return state

    return state


_ROLE_ROUTES = {
    Role.ADMIN: "/(admin)",
    Role.DRIVER: "/(driver)",
    Role.PASSENGER: "/(passenger)",
}


def route_for(state: AuthState, role: Role = Role.PASSENGER) -> Optional[str]:
    """Navigation target for a state; None while loading or blocked."""
    if state is AuthState.UNAUTHENTICATED:
        return "/(auth)/welcome"
    if state is AuthState.NO_PIN:
        return "/(auth)/pin-setup"
    if state in _PIN_PROMPT_STATES:
        return "/(auth)/login"
    if state is AuthState.DRIVER_INCOMPLETE:
        return "/(driver)/driver-registration"
    if state is AuthState.AUTHENTICATED:
        return _ROLE_ROUTES[role]
    return None


class _InFlightGuard:
    """Refuses re-entrant submissions, like a PIN pad disabled while loading."""

    def __init__(self) -> None:
        self.busy = False

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self.busy:
            raise BusyError()
        self.busy = True
        try:
            yield
        finally:
            self.busy = False


# -----------------------------
# PIN setup (create -> confirm -> biometric)
# -----------------------------
class SetupStep(Enum):
    CREATE = "create"
    CONFIRM = "confirm"
    BIOMETRIC = "biometric"
    COMPLETE = "complete"


@dataclass
class SetupStepResult:
    step: SetupStep
    error: Optional[SecurityError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PinSetupFlow:
    """
    Two-entry PIN creation. The confirm entry must equal the create entry
    exactly; a mismatch discards the first entry and restarts at CREATE
    without persisting anything.
    """

    def __init__(
        self,
        credentials: PinCredentialStore,
        trust: DeviceTrustRegistry,
        biometric: BiometricGate,
        is_reset: bool = False,
        audit: Optional[AuditTrail] = None,
    ):
        self.credentials = credentials
        self.trust = trust
        self.biometric = biometric
        self.is_reset = is_reset
        self.audit = audit or AuditTrail()
        self.step = SetupStep.CREATE
        self._first_pin: Optional[str] = None
        self._guard = _InFlightGuard()

    @property
    def completed(self) -> bool:
        return self.step is SetupStep.COMPLETE

    @property
    def busy(self) -> bool:
        return self._guard.busy

    def _restart(self, error: SecurityError) -> SetupStepResult:
        self._first_pin = None
        self.step = SetupStep.CREATE
        return SetupStepResult(step=self.step, error=error)

    def enter(self, pin: str) -> SetupStepResult:
        with self._guard.hold():
            if self.step is SetupStep.CREATE:
                try:
                    validate_pin(pin, self.credentials.cfg.length)
                except ValidationError as e:
                    return SetupStepResult(step=self.step, error=e)
                self._first_pin = pin
                self.step = SetupStep.CONFIRM
                return SetupStepResult(step=self.step)

            if self.step is SetupStep.CONFIRM:
                return self._confirm(pin)

            raise SecurityError("PIN already set", reason="setup_step_closed")

    def _confirm(self, pin: str) -> SetupStepResult:
        if pin != self._first_pin:
            self.audit.record("pin_setup", "DENY", "pin_mismatch")
            return self._restart(ValidationError("PINs do not match. Please try again.", reason="pin_mismatch"))

        try:
            self.credentials.setup_pin(pin)
        except ValidationError as e:
            return self._restart(e)
        except StorageError:
            self._restart(StorageError())
            raise
        self._first_pin = None

        if not self.is_reset:
            self.trust.mark_device_as_known()
        self.audit.record("pin_setup", "ALLOW", "pin_reset" if self.is_reset else "pin_created")

        if self.biometric.get_biometric_capability().available:
            self.step = SetupStep.BIOMETRIC
        else:
            self.step = SetupStep.COMPLETE
        return SetupStepResult(step=self.step)

    def enable_biometric(self) -> SetupStepResult:
        if self.step is not SetupStep.BIOMETRIC:
            raise SecurityError("Fingerprint setup is not available now", reason="setup_step_closed")
        self.step = SetupStep.COMPLETE
        try:
            self.biometric.enable_biometric()
        except UnavailableError as e:
            return SetupStepResult(step=self.step, error=e)
        return SetupStepResult(step=self.step)

    def skip_biometric(self) -> SetupStepResult:
        if self.step is not SetupStep.BIOMETRIC:
            raise SecurityError("Fingerprint setup is not available now", reason="setup_step_closed")
        self.step = SetupStep.COMPLETE
        return SetupStepResult(step=self.step)


# -----------------------------
# Login flow
# -----------------------------
@dataclass
class PinSubmission:
    accepted: bool
    state: AuthState
    error: Optional[SecurityError] = None
    remaining_time: int = 0
    failed_attempts: int = 0


@dataclass
class SecuritySettings:
    pin_enabled: bool
    biometric_enabled: bool
    pin_last_changed: Optional[datetime]
    pin_expired: bool
    known_devices: List[str] = field(default_factory=list)


ProfileLookup = Callable[[str], UserProfile]

_GENERIC_FAILURE = "Failed to verify PIN. Please try again."


class AuthFlowController:
    """
    Decides which authentication step to present, re-evaluated on every
    session event (cold start, foreground resume, sign-in, setup done).

    The components are injected once at app start; the controller owns only
    the current state and the identity of the signed-in user.
    """

    def __init__(
        self,
        credentials: PinCredentialStore,
        lockout: LockoutPolicy,
        trust: DeviceTrustRegistry,
        biometric: BiometricGate,
        audit: Optional[AuditTrail] = None,
        profile_lookup: Optional[ProfileLookup] = None,
    ):
        self.credentials = credentials
        self.lockout = lockout
        self.trust = trust
        self.biometric = biometric
        self.audit = audit or AuditTrail()
        self.profile_lookup = profile_lookup

        self.state = AuthState.LOADING
        self.user_id: Optional[str] = None
        self.profile = UserProfile()
        self.error_message: Optional[str] = None
        self._guard = _InFlightGuard()

    @property
    def busy(self) -> bool:
        return self._guard.busy

    @property
    def route(self) -> Optional[str]:
        return route_for(self.state, self.profile.role)

    def dispatch(self, event: Event) -> AuthState:
        previous = self.state
        self.state = transition(self.state, event)
        if self.state is not previous:
            logger.info("auth state %s -> %s (%s)", previous, self.state, type(event).__name__)
        return self.state

    def _fail(self, err: SecurityError) -> None:
        logger.error("auth flow blocked: %s (%s)", err.reason, err, exc_info=err)
        self.error_message = err.message
        self.dispatch(EnvironmentFailed(err.message))
        self.audit.record("auth_flow", "ERROR", err.reason)

    def _silent_biometric(self) -> AuthenticationResult:
        try:
            return self.biometric.authenticate_with_biometric()
        except BiometricHardwareError as e:
            # fall back to PIN; the sensor failure is logged, not shown
            logger.warning("biometric unavailable, falling back to PIN: %s", e)
            return AuthenticationResult(
                success=False,
                method=AuthMethod.BIOMETRIC,
                error=BiometricErrorKind.HARDWARE_ERROR,
                message=e.message,
            )

    def _resolve_profile(self) -> None:
        profile = UserProfile()
        if self.profile_lookup is not None and self.user_id is not None:
            try:
                profile = self.profile_lookup(self.user_id)
            except Exception as e:
                logger.error("profile lookup failed, defaulting to passenger: %s", e)
                profile = UserProfile()
        self.profile = profile
        self.dispatch(ProfileResolved(profile))

    def on_session_changed(self, user_id: Optional[str]) -> AuthState:
        """Identity provider callback: a user signed in, out, or the app resumed."""
        self.user_id = user_id
        self.profile = UserProfile()
        self.error_message = None
        self.dispatch(SessionChanged(user_id))
        if user_id is None:
            return self.state
        return self._evaluate()

    def _evaluate(self) -> AuthState:
        try:
            if not self.credentials.has_pin():
                return self.dispatch(PinMissing())

            if self.trust.is_new_device():
                self.audit.record("device_check", "STEP_UP", "new_device")
                return self.dispatch(DeviceUnrecognized())

            capability = self.biometric.get_biometric_capability()
            if capability.available and self.biometric.is_biometric_enabled():
                result = self._silent_biometric()
                if result.success:
                    self.lockout.reset_failed_attempts()
                    self.audit.record("biometric", "ALLOW", "ok_biometric")
                    self.dispatch(BiometricSucceeded())
                    self._resolve_profile()
                    return self.state
                self.audit.record("biometric", "FALLBACK", result.error.value if result.error else "failed")

            return self.dispatch(BiometricSkipped())
        except StorageError as e:
            self._fail(e)
            return self.state

    def lock_status(self) -> LockStatus:
        return self.lockout.is_account_locked()

    def submit_pin(self, pin: str) -> PinSubmission:
        """
        Handle a completed PIN entry. Wrong input comes back as a rejected
        PinSubmission; storage failures move to ERROR and raise StorageError.
        """
        with self._guard.hold():
            if self.state not in _PIN_PROMPT_STATES:
                raise SecurityError("PIN entry is not expected now", reason="no_pin_prompt")

            try:
                return self._submit_pin(pin)
            except StorageError as e:
                self._fail(e)
                raise StorageError(_GENERIC_FAILURE) from e

    def _submit_pin(self, pin: str) -> PinSubmission:
        status = self.lockout.is_account_locked()
        if status.is_locked:
            self.audit.record("pin_login", "DENY", "locked_out", remaining_seconds=status.remaining_time)
            return PinSubmission(
                accepted=False,
                state=self.state,
                error=LockedError(status.remaining_time),
                remaining_time=status.remaining_time,
                failed_attempts=status.failed_attempts,
            )

        try:
            ok = self.credentials.verify_pin(pin)
        except NotConfiguredError as e:
            self.dispatch(PinMissing())
            return PinSubmission(accepted=False, state=self.state, error=e)

        if ok:
            self.lockout.reset_failed_attempts()
            self.trust.mark_device_as_known()
            self.audit.record("pin_login", "ALLOW", "ok_pin")
            self.dispatch(PinAccepted())
            self._resolve_profile()
            return PinSubmission(accepted=True, state=self.state)

        try:
            attempts = self.lockout.track_failed_attempt()
        except LockedError as e:
            self.audit.record("pin_login", "DENY", "locked_out", remaining_seconds=e.remaining_seconds)
            self.dispatch(PinRejected())
            return PinSubmission(
                accepted=False,
                state=self.state,
                error=e,
                remaining_time=e.remaining_seconds,
                failed_attempts=self.lockout.cfg.max_failed_attempts,
            )

        self.audit.record("pin_login", "DENY", "bad_pin", failed_attempts=attempts)
        self.dispatch(PinRejected())
        return PinSubmission(
            accepted=False,
            state=self.state,
            error=IncorrectCredentialError("Invalid PIN", reason="bad_pin"),
            failed_attempts=attempts,
        )

    def retry_biometric(self) -> AuthenticationResult:
        """Fingerprint button on the PIN screen. Not offered on a new device."""
        if self.state is not AuthState.NEEDS_PIN:
            return AuthenticationResult(success=False, method=AuthMethod.BIOMETRIC, error=BiometricErrorKind.NOT_AVAILABLE)
        try:
            capability = self.biometric.get_biometric_capability()
            if not capability.available or not self.biometric.is_biometric_enabled():
                return AuthenticationResult(success=False, method=AuthMethod.BIOMETRIC, error=BiometricErrorKind.NOT_AVAILABLE)

            result = self._silent_biometric()
            if result.success:
                self.lockout.reset_failed_attempts()
                self.audit.record("biometric", "ALLOW", "ok_biometric")
                self.dispatch(BiometricSucceeded())
                self._resolve_profile()
            return result
        except StorageError as e:
            self._fail(e)
            raise

    def begin_pin_setup(self) -> PinSetupFlow:
        if self.state is not AuthState.NO_PIN:
            raise SecurityError("PIN is already set up", reason="pin_already_configured")
        return PinSetupFlow(self.credentials, self.trust, self.biometric, is_reset=False, audit=self.audit)

    def begin_pin_reset(self) -> PinSetupFlow:
        """
        Forgot-PIN path, after the identity provider re-verified the user
        (phone OTP). Drops the credential and the lockout counter.
        """
        try:
            self.credentials.delete_pin()
            self.lockout.reset_failed_attempts()
        except StorageError as e:
            self._fail(e)
            raise
        self.audit.record("pin_reset", "ALLOW", "pin_deleted")
        self.dispatch(PinMissing())
        return PinSetupFlow(self.credentials, self.trust, self.biometric, is_reset=True, audit=self.audit)

    def complete_pin_setup(self, flow: PinSetupFlow) -> AuthState:
        if not flow.completed:
            raise SecurityError("PIN setup is not finished", reason="setup_incomplete")
        self.dispatch(PinSetupCompleted())
        if self.user_id is None:
            return self.dispatch(SessionChanged(None))
        return self._evaluate()

    def security_settings(self) -> SecuritySettings:
        return SecuritySettings(
            pin_enabled=self.credentials.has_pin(),
            biometric_enabled=self.biometric.is_biometric_enabled(),
            pin_last_changed=self.credentials.last_changed(),
            pin_expired=self.credentials.is_pin_expired(),
            known_devices=self.trust.known_devices(),
        )
