"""Unit tests for auth/otp.py -- OtpManager request/verify/purge."""

import threading
from datetime import timedelta

import pytest

from auth.errors import DeliveryFailed, OperationTimeout, OtpDispatchFailed, UserNotFound
from auth.models import Identity, OtpRecord
from auth.otp import OtpManager, generate_code
from auth.store import IdentityStore, OtpStore, create_store_engine

EMAIL = "a@x.com"


@pytest.fixture
def registered(identities):
    return identities.create(Identity(email=EMAIL, password_hash="h", wallet_nonce="n"))


class TestGenerateCode:
    def test_six_digits_in_range(self):
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6
            assert 100000 <= int(code) <= 999999

    def test_custom_length(self):
        code = generate_code(8)
        assert len(code) == 8
        assert code.isdigit()


class TestRequest:
    def test_issues_and_dispatches(self, otp_manager, otps, notifier, registered, clock):
        record = otp_manager.request(EMAIL)
        assert notifier.sent == [(EMAIL, record.code)]
        assert record.expires_at == clock() + timedelta(minutes=5)
        assert otps.find_by_email_and_code(EMAIL, record.code) is not None

    def test_unknown_email_persists_and_sends_nothing(self, otp_manager, otps, notifier):
        with pytest.raises(UserNotFound):
            otp_manager.request("ghost@x.com")
        assert notifier.sent == []
        assert otps.list_for_email("ghost@x.com") == []

    def test_delivery_failure_keeps_record(self, otp_manager, otps, notifier, registered):
        notifier.fail_with = DeliveryFailed()
        with pytest.raises(OtpDispatchFailed) as excinfo:
            otp_manager.request(EMAIL)
        assert isinstance(excinfo.value.__cause__, DeliveryFailed)
        assert len(otps.list_for_email(EMAIL)) == 1

    def test_delivery_timeout_is_preserved_as_cause(self, otp_manager, notifier, registered):
        notifier.fail_with = OperationTimeout()
        with pytest.raises(OtpDispatchFailed) as excinfo:
            otp_manager.request(EMAIL)
        assert isinstance(excinfo.value.__cause__, OperationTimeout)

    def test_undelivered_code_still_verifies(self, otp_manager, otps, notifier, registered):
        notifier.fail_with = DeliveryFailed()
        with pytest.raises(OtpDispatchFailed):
            otp_manager.request(EMAIL)
        code = otps.list_for_email(EMAIL)[0].code
        assert otp_manager.verify(EMAIL, code) is True

    def test_unexpected_notifier_error_is_dispatch_failure(self, otp_manager, otps, notifier, registered):
        notifier.fail_with = ConnectionError("relay down")
        with pytest.raises(OtpDispatchFailed) as excinfo:
            otp_manager.request(EMAIL)
        assert isinstance(excinfo.value.__cause__, ConnectionError)
        assert len(otps.list_for_email(EMAIL)) == 1

    def test_multiple_outstanding_codes(self, otp_manager, otps, notifier, registered):
        first = otp_manager.request(EMAIL)
        second = otp_manager.request(EMAIL)
        assert len(otps.list_for_email(EMAIL)) == 2
        assert otp_manager.verify(EMAIL, first.code) is True
        assert otp_manager.verify(EMAIL, second.code) is True


class TestVerify:
    def test_code_is_single_use(self, otp_manager, notifier, registered):
        otp_manager.request(EMAIL)
        code = notifier.last_code(EMAIL)
        assert otp_manager.verify(EMAIL, code) is True
        assert otp_manager.verify(EMAIL, code) is False

    def test_identical_outstanding_codes_verify_once(self, otp_manager, otps, clock, registered):
        for _ in range(2):
            otps.save(OtpRecord(email=EMAIL, code="123456", expires_at=clock() + timedelta(minutes=5)))
        assert otp_manager.verify(EMAIL, "123456") is True
        assert otp_manager.verify(EMAIL, "123456") is False
        assert otps.list_for_email(EMAIL) == []

    def test_identical_codes_live_one_wins(self, otp_manager, otps, clock, registered):
        otps.save(OtpRecord(email=EMAIL, code="123456", expires_at=clock() - timedelta(minutes=1)))
        otps.save(OtpRecord(email=EMAIL, code="123456", expires_at=clock() + timedelta(minutes=5)))
        assert otp_manager.verify(EMAIL, "123456") is True
        assert otp_manager.verify(EMAIL, "123456") is False

    def test_expired_code_fails_and_is_removed(self, otp_manager, otps, notifier, registered, clock):
        otp_manager.request(EMAIL)
        code = notifier.last_code(EMAIL)
        clock.advance(minutes=6)
        assert otp_manager.verify(EMAIL, code) is False
        assert otps.find_by_email_and_code(EMAIL, code) is None

    def test_expiry_boundary_is_exclusive(self, otp_manager, notifier, registered, clock):
        otp_manager.request(EMAIL)
        code = notifier.last_code(EMAIL)
        clock.advance(minutes=5)
        assert otp_manager.verify(EMAIL, code) is False

    def test_wrong_code_leaves_record_alone(self, otp_manager, otps, notifier, registered):
        otp_manager.request(EMAIL)
        code = notifier.last_code(EMAIL)
        wrong = "000000" if code != "000000" else "111111"
        assert otp_manager.verify(EMAIL, wrong) is False
        assert otps.find_by_email_and_code(EMAIL, code) is not None

    def test_code_bound_to_email(self, otp_manager, identities, notifier, registered):
        identities.create(Identity(email="b@x.com", password_hash="h", wallet_nonce="n"))
        otp_manager.request(EMAIL)
        code = notifier.last_code(EMAIL)
        assert otp_manager.verify("b@x.com", code) is False
        assert otp_manager.verify(EMAIL, code) is True


class TestPurge:
    def test_purge_removes_only_expired(self, otp_manager, otps, notifier, registered, clock):
        otp_manager.request(EMAIL)
        clock.advance(minutes=3)
        fresh = otp_manager.request(EMAIL)
        clock.advance(minutes=3)

        assert otp_manager.purge_expired() == 1
        remaining = otps.list_for_email(EMAIL)
        assert [r.code for r in remaining] == [fresh.code]


def test_concurrent_verify_succeeds_once(tmp_path, notifier, clock):
    """Many threads racing on one code: exactly one verification wins."""
    engine = create_store_engine(f"sqlite:///{tmp_path / 'otp.db'}", timeout_seconds=10.0)
    identities = IdentityStore(engine=engine)
    identities.create(Identity(email=EMAIL, password_hash="h", wallet_nonce="n"))
    manager = OtpManager(identities, OtpStore(engine=engine), notifier, clock=clock)
    manager.request(EMAIL)
    code = notifier.last_code(EMAIL)

    workers = 8
    barrier = threading.Barrier(workers)
    results: list[bool] = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        ok = manager.verify(EMAIL, code)
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    engine.dispose()

    assert len(results) == workers
    assert results.count(True) == 1
