"""
Identifier and secret helpers.
"""

import hashlib
import re
import secrets
import string
from typing import Optional

API_KEY_PREFIX = "edge_"
PROJECT_ID_LENGTH = 24

_ALPHABET = string.ascii_letters + string.digits
_PROJECT_ALPHABET = string.ascii_lowercase + string.digits
# A single DNS label
_PROJECT_ID_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def generate_api_key() -> str:
    """Generate a raw API key. Only its hash is ever stored."""
    return API_KEY_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(32))


def hash_api_key(api_key: str) -> str:
    """Deterministic hash of a raw API key, used as the credential id."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_project_id() -> str:
    return "".join(secrets.choice(_PROJECT_ALPHABET) for _ in range(PROJECT_ID_LENGTH))


def normalize_project_id(value: Optional[str]) -> Optional[str]:
    """Lowercase a project id; None when it is not a valid DNS label."""
    if not value:
        return None
    candidate = value.strip().lower()
    if not _PROJECT_ID_RE.match(candidate):
        return None
    return candidate
