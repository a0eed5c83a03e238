"""Canonical Pydantic models shared across all shelfcache modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CacheConfig`, :class:`RequestConfig`, :class:`OutputConfig`, and
    :class:`GlobalConfig`.

**Catalog models** -- shapes exchanged with the catalog backend:
    :class:`Book`, :class:`Publisher`, :class:`Language`, :class:`User`,
    :class:`BookInput`, :class:`LoginRequest`, :class:`SignupRequest`, and
    :class:`LoginResponse`.

All models use Pydantic v2. Backend records use ``extra="allow"`` so that
fields added server-side survive a round trip through the cache.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)


# --- Configuration ---


class CacheConfig(BaseModel):
    """Freshness and eviction settings for :class:`~shelfcache.query.QueryCache`.

    ``stale_time`` is the freshness window: an entry younger than this is
    served on subscribe without a refetch. The default of ``0`` treats every
    entry as stale immediately, so each new subscriber triggers a background
    revalidation while still seeing the cached value.

    ``gc_time`` is how long an entry with no subscribers is kept before it is
    evicted. ``None`` keeps entries until they are removed explicitly.
    """

    stale_time: float = Field(
        default=0.0, ge=0, description="Seconds an entry stays fresh after a successful fetch"
    )
    gc_time: Optional[float] = Field(
        default=300.0,
        ge=0,
        description="Seconds an unobserved entry is retained (None = never evict)",
    )


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every backend call."""

    base_url: Optional[str] = Field(
        default=None, description="Catalog backend base URL"
    )
    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(default=0, ge=0, description="Max retry attempts")


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: str = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/shelfcache/config.json``.

    Loaded and saved by :func:`~shelfcache.config.load_global_config` and
    :func:`~shelfcache.config.save_global_config`. See
    :func:`~shelfcache.config.resolve_config` for the precedence chain.
    """

    request: RequestConfig = Field(default_factory=RequestConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# --- Catalog records ---


class Book(BaseModel):
    """A book as returned by ``GET book`` and ``GET book/<id>``."""

    model_config = ConfigDict(extra="allow")

    id: int
    title: str
    isbn13: str
    language_id: int
    num_pages: int
    publication_date: Optional[str] = None
    publisher_id: int

    @field_validator("isbn13", mode="before")
    @classmethod
    def _isbn_as_text(cls, value: object) -> object:
        # The backend stores ISBNs as numbers on some rows.
        if isinstance(value, int):
            return str(value)
        return value


class Publisher(BaseModel):
    """A publisher as returned by ``GET publisher``."""

    model_config = ConfigDict(extra="allow")

    id: int
    publisher_name: str
    incorporation_date: Optional[str] = None


class Language(BaseModel):
    """A row of ``GET book_language``."""

    model_config = ConfigDict(extra="allow")

    language_id: int
    language_code: Optional[str] = None
    language_name: str


class User(BaseModel):
    """The signed-in user kept in the session store and shown by ``profile``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[int] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: str
    birthdate: Optional[str] = None


# --- Write payloads ---


class BookInput(BaseModel):
    """Body of ``POST book`` and ``PUT book/<id>``."""

    title: str = Field(min_length=1)
    isbn13: str = Field(pattern=r"^\d{13}$")
    num_pages: int = Field(gt=0)
    language_id: int = Field(gt=0)
    publisher_id: int = Field(gt=0)
    publication_date: Optional[date] = None

    @field_validator("isbn13", mode="before")
    @classmethod
    def _isbn_as_text(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.replace("-", "").strip()
        return value


class LoginRequest(BaseModel):
    """Body of ``POST login``."""

    email: EmailStr
    password: str = Field(min_length=4)


class LoginResponse(BaseModel):
    """Response of ``POST login``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    user: Optional[User] = None


class SignupRequest(BaseModel):
    """Registration form. ``confirm_password`` never leaves the client."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(min_length=2, alias="firstName")
    last_name: str = Field(min_length=2, alias="lastName")
    birthdate: date
    email: EmailStr
    password: str = Field(min_length=4)
    confirm_password: str = Field(min_length=1, alias="confirmPassword")

    @model_validator(mode="after")
    def _passwords_match(self) -> "SignupRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self

    def api_payload(self) -> dict[str, str]:
        """Return the JSON body sent to ``POST signup``."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "birthdate": self.birthdate.isoformat(),
            "email": self.email,
            "password": self.password,
        }
