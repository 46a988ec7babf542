"""Referral code generation.

Codes are 8-character alphanumeric (A-Z, 0-9), generated server-side
with a cryptographic random source. Users cannot choose their own codes.
"""

from __future__ import annotations

import secrets
import string

from mining_rewards.mining.stores import UserStore

REFERRAL_CHARSET = string.ascii_uppercase + string.digits  # A-Z, 0-9
REFERRAL_CODE_LENGTH = 8
MAX_ATTEMPTS = 10


def generate_referral_code() -> str:
    """Generate a cryptographically random 8-character referral code."""
    return "".join(secrets.choice(REFERRAL_CHARSET) for _ in range(REFERRAL_CODE_LENGTH))


def normalize_referral_code(code: str) -> str:
    """Normalize a referral code for case-insensitive lookup."""
    return code.strip().upper()


async def generate_unique_referral_code(users: UserStore) -> str:
    """Generate a referral code no existing user owns."""
    for _ in range(MAX_ATTEMPTS):
        code = generate_referral_code()
        if not await users.referral_code_exists(code):
            return code
    msg = f"Failed to generate unique referral code after {MAX_ATTEMPTS} attempts"
    raise RuntimeError(msg)
