"""
auth/otp.py -- One-time passcode issuance and verification.

Lifecycle per (email, code):  Issued -> Verified (deleted) | Expired (deleted)
There is no "used" flag. One-time use is enforced by deleting the record in
the same atomic step that finds it (OtpStore.consume), so two concurrent
verifications of one code cannot both succeed.

Codes are drawn with secrets.randbelow over [10**(n-1), 10**n - 1], inclusive
at both ends, so every code has exactly n digits and no leading zero can be
lost in transit.

Several outstanding codes for one email are allowed; request() never
invalidates earlier codes.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import DeliveryFailed, OperationTimeout, OtpDispatchFailed, UserNotFound
from auth.interfaces import IdentityStore, Notifier, OtpStore
from auth.models import OtpRecord

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("credcore.otp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(length: int = 6) -> str:
    """Return a uniformly random numeric code of exactly length digits."""
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))


class OtpManager:
    def __init__(
        self,
        identities: IdentityStore,
        otps: OtpStore,
        notifier: Notifier,
        ttl: timedelta = timedelta(minutes=5),
        code_length: int = 6,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._identities = identities
        self._otps = otps
        self._notifier = notifier
        self.ttl = ttl
        self.code_length = code_length
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identities: IdentityStore,
        otps: OtpStore,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> OtpManager:
        return cls(
            identities,
            otps,
            notifier,
            ttl=timedelta(seconds=settings.otp_ttl_seconds),
            code_length=settings.otp_length,
            clock=clock,
        )

    def request(self, email: str) -> OtpRecord:
        """Issue a code for a registered email and dispatch it.

        Raises:
            UserNotFound:      no identity for email (nothing persisted, nothing sent).
            OtpDispatchFailed: the code was stored but the notifier failed or
                               timed out. The stored code stays valid.
        """
        if self._identities.find_by_email(email) is None:
            raise UserNotFound()

        record = self._otps.save(
            OtpRecord(
                email=email,
                code=generate_code(self.code_length),
                expires_at=self._clock() + self.ttl,
            )
        )

        try:
            self._notifier.send_otp_email(email, record.code)
        except (DeliveryFailed, OperationTimeout) as exc:
            logger.warning("OTP delivery failed for otp_id=%s (%s)", record.id, exc.kind.value)
            raise OtpDispatchFailed() from exc
        except Exception as exc:
            # Notifier raised outside its contract; still a dispatch failure.
            logger.exception("OTP delivery failed for otp_id=%s (unclassified)", record.id)
            raise OtpDispatchFailed() from exc

        logger.info("OTP issued otp_id=%s expires_at=%s", record.id, record.expires_at.isoformat())
        return record

    def verify(self, email: str, code: str) -> bool:
        """Return True exactly once for a live (email, code) pair.

        No match: False, nothing changes. Match past expiry: the record is
        deleted and False is returned. Match before expiry: the record is
        deleted and True is returned. Callers cannot tell which of email or
        code was wrong.
        """
        record = self._otps.consume(email, code)
        if record is None:
            return False
        if self._clock() >= record.expires_at:
            logger.info("Expired OTP presented otp_id=%s; removed", record.id)
            return False
        return True

    def purge_expired(self) -> int:
        """Delete every expired record. Returns the number removed."""
        removed = self._otps.purge_expired(self._clock())
        if removed:
            logger.info("Purged %d expired OTP record(s)", removed)
        return removed
