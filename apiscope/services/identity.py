# ABOUTME: API key identity resolution
# ABOUTME: Extracts bearer tokens from headers and looks up the matching API key

import hashlib
import re
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from apiscope.models.database import APIKey

KEY_PREFIX = "ask_"

# Token token="abc", Token token=abc, Token abc
_TOKEN_SCHEME = re.compile(r'^Token\s+(?:token="?([^",\s]+)"?|([^\s,]+))', re.IGNORECASE)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store and look up API keys."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token() -> str:
    """Generates a new plaintext API key. Format: ask_<64 random hex characters>."""
    return f"{KEY_PREFIX}{secrets.token_hex(32)}"


def extract_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the opaque token out of an Authorization header.

    Supports "Bearer <token>" and the "Token token=<token>" form.
    Returns None for missing or malformed headers.
    """
    if not authorization:
        return None

    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        return token or None

    match = _TOKEN_SCHEME.match(authorization.strip())
    if match:
        return match.group(1) or match.group(2)

    return None


def resolve_identity(db: Session, token: Optional[str]) -> Optional[APIKey]:
    """Returns the active API key for a token, or None."""
    if not token:
        return None

    api_key = db.query(APIKey).filter(APIKey.key_hash == hash_token(token)).first()
    if api_key is None or not api_key.is_active:
        return None
    return api_key
