"""
Record models for the edge service.

Domain records are plain dataclasses that round-trip through flat JSON
documents (``to_record`` / ``from_record``); admin request bodies are pydantic
models.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import AliasChoices, BaseModel, Field, model_validator

from shared.errors import InvalidConfigError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthType(str, Enum):
    """Credential scheme for either auth leg."""
    API_KEY = "api_key"
    OAUTH = "oauth"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "AuthType":
        """Parse a stored value; unknown values are a configuration error."""
        if isinstance(value, AuthType):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidConfigError(details={"auth_type": value})


class EntityType(str, Enum):
    """Record families held by the config store and the edge cache."""
    PROJECT = "project"
    API_KEY = "api_key"
    ACCESS_GRANT = "access_grant"
    OAUTH_TOKEN = "oauth_token"

    @property
    def key_fields(self) -> Tuple[str, ...]:
        return _KEY_FIELDS[self]


_KEY_FIELDS = {
    EntityType.PROJECT: ("project_id", "api_version"),
    EntityType.API_KEY: ("key_hash", "project_id"),
    EntityType.ACCESS_GRANT: ("user_id", "project_id"),
    EntityType.OAUTH_TOKEN: ("user_id", "project_id"),
}


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _Record:
    """Shared serialization for dataclass records."""

    _datetime_fields: Tuple[str, ...] = ()

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        for name in self._datetime_fields:
            if record.get(name) is not None:
                record[name] = record[name].isoformat()
        for name, value in list(record.items()):
            if isinstance(value, Enum):
                record[name] = value.value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in record.items() if key in known}
        for name in cls._datetime_fields:
            if name in values:
                values[name] = _parse_datetime(values[name])
        return cls(**values)


@dataclass
class Project(_Record):
    """A registered proxy configuration."""
    project_id: str
    customer_id: str
    target_url: str
    api_version: str = "v1"
    inbound_auth_type: str = AuthType.API_KEY.value
    outbound_auth_type: str = AuthType.NONE.value
    outbound_static_key: Optional[str] = None
    active: bool = True
    github_repo: Optional[str] = None
    github_branch: Optional[str] = None
    openapi_spec: Optional[Dict[str, Any]] = None
    openapi_spec_hash: Optional[str] = None
    spec_info: Optional[Dict[str, Any]] = None
    source_commit: Optional[str] = None
    last_deployment: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _datetime_fields = ("last_deployment", "created_at", "updated_at")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.project_id, self.api_version)

    @property
    def inbound_auth(self) -> AuthType:
        return AuthType.parse(self.inbound_auth_type)

    @property
    def outbound_auth(self) -> AuthType:
        return AuthType.parse(self.outbound_auth_type)

    def to_public(self) -> Dict[str, Any]:
        """Admin view: the outbound secret is never echoed back."""
        record = self.to_record()
        record["outbound_static_key"] = "****" if self.outbound_static_key else None
        return record


@dataclass
class ApiKeyCredential(_Record):
    """Hashed API key scoped to one project."""
    key_hash: str
    project_id: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _datetime_fields = ("expires_at", "created_at", "updated_at")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.key_hash, self.project_id)

    def is_usable(self, now: datetime) -> bool:
        if not self.active:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass
class AccessGrant(_Record):
    """Authorizes one user on one project."""
    user_id: str
    project_id: str
    customer_id: Optional[str] = None
    has_access: bool = True
    access_level: str = "user"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _datetime_fields = ("created_at", "updated_at")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.project_id)


@dataclass
class OAuthToken(_Record):
    """Third-party token used on the outbound leg for one user."""
    user_id: str
    project_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    provider: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utc_now)

    _datetime_fields = ("expires_at", "updated_at")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.project_id)


RECORD_TYPES = {
    EntityType.PROJECT: Project,
    EntityType.API_KEY: ApiKeyCredential,
    EntityType.ACCESS_GRANT: AccessGrant,
    EntityType.OAUTH_TOKEN: OAuthToken,
}


def record_key(entity_type: EntityType, record: Dict[str, Any]) -> Tuple[str, ...]:
    """Extract the identity tuple of a flat record."""
    return tuple(str(record[name]) for name in entity_type.key_fields)


# Admin request bodies

class ProjectCreateRequest(BaseModel):
    """Request model for project creation."""
    target_url: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    api_version: str = "v1"
    inbound_auth_type: AuthType = Field(
        AuthType.API_KEY, validation_alias=AliasChoices("inbound_auth_type", "auth_type")
    )
    outbound_auth_type: AuthType = Field(
        AuthType.NONE, validation_alias=AliasChoices("outbound_auth_type", "target_auth_type")
    )
    outbound_static_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("outbound_static_key", "target_api_key")
    )
    active: bool = True
    github_repo: Optional[str] = None
    github_branch: Optional[str] = None


REQUIRED_PROJECT_FIELDS = ("target_url", "customer_id", "inbound_auth_type", "outbound_auth_type", "active")


class ProjectUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    target_url: Optional[str] = Field(None, min_length=1)
    customer_id: Optional[str] = None
    inbound_auth_type: Optional[AuthType] = Field(
        None, validation_alias=AliasChoices("inbound_auth_type", "auth_type")
    )
    outbound_auth_type: Optional[AuthType] = Field(
        None, validation_alias=AliasChoices("outbound_auth_type", "target_auth_type")
    )
    outbound_static_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("outbound_static_key", "target_api_key")
    )
    active: Optional[bool] = None
    github_repo: Optional[str] = None
    github_branch: Optional[str] = None

    @model_validator(mode="after")
    def reject_cleared_required_fields(self) -> "ProjectUpdateRequest":
        # Omitted means unchanged; an explicit null may only clear optional fields
        cleared = [name for name in REQUIRED_PROJECT_FIELDS
                   if name in self.model_fields_set and getattr(self, name) is None]
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(cleared)}")
        return self


class ApiKeyCreateRequest(BaseModel):
    user_id: Optional[str] = None
    name: Optional[str] = None
    expires_at: Optional[datetime] = None


class AccessGrantRequest(BaseModel):
    customer_id: Optional[str] = None
    has_access: bool = True
    access_level: str = "user"


class OAuthTokenRequest(BaseModel):
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    provider: Optional[str] = None
    expires_at: Optional[datetime] = None


class SpecUploadRequest(BaseModel):
    spec: Dict[str, Any]
    api_version: Optional[str] = None
    source_commit: Optional[str] = None
