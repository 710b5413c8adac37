"""
Caller identity produced by inbound authentication.
"""

from dataclasses import dataclass
from typing import Optional

from ..models import AuthType


@dataclass(frozen=True)
class AuthIdentity:
    """Who is calling. Anonymous exactly when ``user_id`` is None."""

    auth_type: AuthType
    user_id: Optional[str] = None
    access_level: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


ANONYMOUS = AuthIdentity(auth_type=AuthType.NONE)
