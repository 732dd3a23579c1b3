############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# api_keys.py: Project API key generation, hashing, and verification
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Project API key generation and verification."""

import hashlib
import secrets
from typing import Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import crud
from backend.app.db.models import ApiKey

# API key format: cg_<random_string>
API_KEY_PREFIX = "cg_"

# Use Argon2 for hashing
_hasher = PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def _lookup_prefix(api_key: str) -> str:
    random_part = api_key[len(API_KEY_PREFIX):]
    return f"{API_KEY_PREFIX}{random_part[:8]}"


def generate_api_key() -> Tuple[str, str, str]:
    """
    Generate a new project API key.

    Returns:
        Tuple of (full_key, key_hash, key_prefix)
        - full_key: The complete API key to hand out (store nowhere!)
        - key_hash: Argon2 hash to store in database
        - key_prefix: Prefix plus first 8 random chars, for lookup
    """
    full_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return full_key, hash_api_key(full_key), _lookup_prefix(full_key)


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key using Argon2.

    The key is normalized with SHA-256 first, then hashed with Argon2.
    """
    normalized = hashlib.sha256(api_key.encode()).hexdigest()
    return _hasher.hash(normalized)


def _verify_key_hash(api_key: str, key_hash: str) -> bool:
    try:
        normalized = hashlib.sha256(api_key.encode()).hexdigest()
        _hasher.verify(key_hash, normalized)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


async def verify_api_key(db: AsyncSession, api_key: str) -> Optional[ApiKey]:
    """
    Verify an API key and return the ApiKey record if valid.

    Looks up by prefix first (indexed), then verifies the hash.

    Args:
        db: Database session
        api_key: The raw API key to verify

    Returns:
        ApiKey record if valid, None otherwise
    """
    if not api_key.startswith(API_KEY_PREFIX):
        return None

    db_key = await crud.get_api_key_by_prefix(db, _lookup_prefix(api_key))
    if not db_key:
        return None

    if _verify_key_hash(api_key, db_key.key_hash):
        return db_key
    return None
