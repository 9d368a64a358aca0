"""
Unit tests for PinSetupFlow (create -> confirm -> fingerprint).
"""

import pytest

from pinguard.biometric import BiometricGate
from pinguard.credentials import PinCredentialStore
from pinguard.errors import SecurityError, StorageError, UnavailableError, ValidationError
from pinguard.flow import PinSetupFlow, SetupStep


@pytest.fixture
def flow(credentials, trust, gate, audit):
    return PinSetupFlow(credentials, trust, gate, audit=audit)


class TestPinSetupFlow:
    """Two-entry PIN creation."""

    def test_mismatch_restarts(self, flow, credentials, audit):
        """create 111111, confirm 222222: back to create, nothing stored."""
        assert flow.enter("111111").step is SetupStep.CONFIRM

        res = flow.enter("222222")

        assert res.step is SetupStep.CREATE
        assert isinstance(res.error, ValidationError)
        assert res.error.reason == "pin_mismatch"
        assert res.error.message == "PINs do not match. Please try again."
        assert credentials.has_pin() is False
        assert audit.recent(1)[0]["reason"] == "pin_mismatch"

    def test_first_entry_not_kept_after_mismatch(self, flow, credentials):
        flow.enter("111111")
        flow.enter("222222")

        # "111111" is now a fresh create entry, not a confirm of the old one
        assert flow.enter("111111").step is SetupStep.CONFIRM
        assert credentials.has_pin() is False

    def test_invalid_create_entry(self, flow):
        res = flow.enter("12ab")
        assert res.step is SetupStep.CREATE
        assert isinstance(res.error, ValidationError)
        assert not res.ok

    def test_match_offers_fingerprint(self, flow, credentials, trust):
        flow.enter("482913")
        res = flow.enter("482913")

        assert res.ok
        assert res.step is SetupStep.BIOMETRIC
        assert credentials.verify_pin("482913") is True
        assert trust.is_new_device() is False

    def test_enable_fingerprint(self, flow, gate):
        flow.enter("482913")
        flow.enter("482913")
        res = flow.enable_biometric()

        assert res.step is SetupStep.COMPLETE
        assert flow.completed is True
        assert gate.is_biometric_enabled() is True

    def test_skip_fingerprint(self, flow, gate):
        flow.enter("482913")
        flow.enter("482913")
        flow.skip_biometric()

        assert flow.completed is True
        assert gate.is_biometric_enabled() is False

    def test_no_sensor_completes_directly(self, credentials, trust, plain_store, no_sensor, audit):
        flow = PinSetupFlow(credentials, trust, BiometricGate(no_sensor, plain_store), audit=audit)
        flow.enter("482913")
        assert flow.enter("482913").step is SetupStep.COMPLETE

    def test_enable_failure_still_completes(self, flow, platform):
        flow.enter("482913")
        flow.enter("482913")
        platform.enrolled = False

        res = flow.enable_biometric()

        assert flow.completed is True
        assert isinstance(res.error, UnavailableError)

    def test_reset_does_not_touch_trust(self, credentials, trust, gate, audit):
        flow = PinSetupFlow(credentials, trust, gate, is_reset=True, audit=audit)
        flow.enter("482913")
        flow.enter("482913")

        assert credentials.has_pin() is True
        assert trust.is_new_device() is True

    def test_closed_steps(self, flow):
        with pytest.raises(SecurityError):
            flow.enable_biometric()
        with pytest.raises(SecurityError):
            flow.skip_biometric()

        flow.enter("482913")
        flow.enter("482913")
        flow.skip_biometric()
        with pytest.raises(SecurityError):
            flow.enter("482913")

    def test_storage_failure(self, trust, gate, audit, broken_secure_store, clock):
        flow = PinSetupFlow(PinCredentialStore(broken_secure_store, clock=clock), trust, gate, audit=audit)
        flow.enter("482913")

        with pytest.raises(StorageError):
            flow.enter("482913")
        assert flow.step is SetupStep.CREATE
        assert trust.is_new_device() is True
