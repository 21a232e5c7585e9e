"""
core/crypto.py: Tokens, Hashing & Wallet Signatures
=====================================================
Central place for ALL signing and hashing.
Every module imports from here: never roll your own crypto elsewhere.

Provides:
- JWT access tokens (walletAddress, userId, role)   (via python-jose)
- EIP-191 wallet signature recovery                  (via eth-account)
- SHA-3 hashing used for simulated tx hashes and CIDs
"""

import hashlib
import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from jose import JWTError, jwt
from config import settings

logger = logging.getLogger("deedchain.crypto")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration(value: str) -> timedelta:
    """
    Parse an expiry string like "7d", "12h", "30m", "45s" or "3600".
    Raises ValueError for anything else.
    """
    match = _DURATION_RE.match(str(value).lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


class CryptoEngine:
    """
    Singleton crypto engine: used across all modules via:
        from core.crypto import crypto_engine
    """

    def __init__(self):
        self._token_ttl: Optional[timedelta] = None

    def initialize(self):
        """Called once on app startup (main.py lifespan)."""
        self._token_ttl = parse_duration(settings.JWT_EXPIRES_IN)
        if settings.JWT_SECRET == "change-me-in-production" and settings.ENVIRONMENT == "production":
            logger.warning("JWT_SECRET is still the default value in production!")
        logger.info(f"Crypto engine initialized (token ttl {self._token_ttl}).")

    @property
    def token_ttl(self) -> timedelta:
        if self._token_ttl is None:
            self._token_ttl = parse_duration(settings.JWT_EXPIRES_IN)
        return self._token_ttl

    # ── JWT Tokens ─────────────────────────────────────────────────────────
    def create_access_token(self, wallet_address: str, user_id: str, role: str) -> str:
        """Create a signed JWT carrying the caller's wallet, id and role."""
        now = datetime.utcnow()
        payload = {
            "walletAddress": wallet_address,
            "userId": user_id,
            "role": role,
            "iat": now,
            "exp": now + self.token_ttl,
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict:
        """Verify and decode a JWT. Raises JWTError if invalid/expired."""
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        if not payload.get("walletAddress"):
            raise JWTError("Token has no walletAddress claim")
        return payload

    # ── Wallet signatures ──────────────────────────────────────────────────
    def recover_signer(self, message: str, signature: str) -> str:
        """Recover the address that signed `message` with personal_sign."""
        return Account.recover_message(encode_defunct(text=message), signature=signature)

    def validate_wallet_signature(self, message: str, signature: str, address: str) -> bool:
        try:
            recovered = self.recover_signer(message, signature)
        except Exception as e:
            logger.error(f"Signature validation failed: {e}")
            return False
        return recovered.lower() == address.lower()

    # ── Hashing ────────────────────────────────────────────────────────────
    def hash_sha3(self, data: str) -> str:
        """SHA-3 (256) hex digest."""
        return hashlib.sha3_256(data.encode()).hexdigest()

    def hash_bytes(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()


# Singleton instance: import this everywhere
crypto_engine = CryptoEngine()
