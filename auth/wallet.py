"""
auth/wallet.py -- Ethereum wallet linking via signed challenge.

Flow:
1. Client asks for the challenge -> WalletLinker.challenge(user_id) returns
   "Link wallet with nonce: <nonce>" built from the identity's current nonce.
2. Client signs it with personal_sign (EIP-191) in their wallet.
3. Client sends (address, signature) -> WalletLinker.link() rebuilds the
   exact same message, recovers the signer and compares addresses
   case-insensitively.
4. The nonce is rotated as soon as recovery succeeds, whether or not the
   address matched. A signed challenge is therefore good for one attempt:
   replaying it later fails because the message it signed no longer matches.
   The rotation is a compare-and-set on the old nonce, so two concurrent
   submissions of one signature cannot both succeed.

The recovery algorithm sits behind the SignatureRecoverer interface.
EthereumSignatureRecoverer (eth-account) is the shipped implementation; a
different signing scheme only needs a different recoverer.
"""

from __future__ import annotations

import logging
import secrets

from eth_account import Account
from eth_account.messages import encode_defunct

from auth.errors import AddressMismatch, InvalidSignature, UserNotFound
from auth.interfaces import IdentityStore, SignatureRecoverer
from auth.models import Identity, WalletLinkProof

logger = logging.getLogger("credcore.wallet")

CHALLENGE_PREFIX = "Link wallet with nonce: "
NONCE_NUM_BYTES = 32  # 32 bytes = 64 hex characters


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """Generate a cryptographically secure random hex nonce."""
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def challenge_message(nonce: str) -> str:
    """Build the challenge text. Must be byte-identical at issue and verify time."""
    return f"{CHALLENGE_PREFIX}{nonce}"


class EthereumSignatureRecoverer:
    """SignatureRecoverer for EIP-191 personal_sign messages."""

    def recover_address(self, message: str, signature: str) -> str:
        try:
            return Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as exc:
            # eth-account surfaces bad input as ValueError, TypeError,
            # binascii.Error or eth_keys BadSignature depending on the defect.
            raise InvalidSignature() from exc


class WalletLinker:
    def __init__(
        self,
        identities: IdentityStore,
        recoverer: SignatureRecoverer,
        nonce_bytes: int = NONCE_NUM_BYTES,
    ) -> None:
        self._identities = identities
        self._recoverer = recoverer
        self.nonce_bytes = nonce_bytes

    def _load(self, user_id: int) -> Identity:
        identity = self._identities.find_by_id(user_id)
        if identity is None:
            raise UserNotFound()
        return identity

    def challenge(self, user_id: int) -> str:
        """Return the message the identity's wallet must sign next."""
        return challenge_message(self._load(user_id).wallet_nonce)

    def link(self, user_id: int, claimed_address: str, signature: str) -> Identity:
        """Bind claimed_address to the identity if signature proves control of it.

        Raises:
            UserNotFound:     no identity with user_id.
            InvalidSignature: signature could not be parsed or recovered.
            AddressMismatch:  the recovered signer is not claimed_address, or a
                              concurrent attempt already spent the challenge.
        """
        identity = self._load(user_id)
        proof = WalletLinkProof(
            challenge_message=challenge_message(identity.wallet_nonce),
            signature=signature,
            claimed_address=claimed_address,
        )

        recovered = self._recoverer.recover_address(proof.challenge_message, proof.signature)

        # Recovery succeeded: this nonce is spent regardless of the outcome below.
        matched = recovered.lower() == proof.claimed_address.lower()
        expected_nonce = identity.wallet_nonce
        new_nonce = generate_nonce(self.nonce_bytes)
        rotated = self._identities.rotate_nonce(
            user_id,
            expected_nonce,
            new_nonce,
            wallet_address=proof.claimed_address if matched else None,
        )
        if not rotated:
            if self._identities.find_by_id(user_id) is None:
                raise UserNotFound()
            logger.info("Wallet link rejected for user_id=%s: challenge already spent", user_id)
            raise AddressMismatch()

        if not matched:
            logger.info("Wallet link rejected for user_id=%s: address mismatch", user_id)
            raise AddressMismatch()

        identity.wallet_nonce = new_nonce
        identity.wallet_address = proof.claimed_address
        logger.info("Wallet linked for user_id=%s", user_id)
        return identity
