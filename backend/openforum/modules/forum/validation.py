"""
Request validation models and content helpers.

Models carry the user-facing messages; the API error handler joins them
into the uniform error object.
"""

import re
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError

from openforum.core.cache import CacheService
from openforum.core.exceptions import RateLimitedError, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
URL_PATTERN = re.compile(r"https?://[^\s]+")
WEBSITE_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
IMAGE_URL_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE)

RESERVED_USERNAMES = {"admin", "moderator", "system", "support", "help", "api", "www"}
PROFANITY_WORDS = ("badword1", "badword2")

REPORT_REASONS = (
    "spam",
    "harassment",
    "inappropriate_content",
    "misinformation",
    "copyright_violation",
    "other",
)

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_RE = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r'on\w+="[^"]*"')
_REPEATED_CHARS_RE = re.compile(r"(.)\1{10,}", re.IGNORECASE)
_SPAM_PHRASES_RE = re.compile(r"buy now|click here|limited time|act fast", re.IGNORECASE)


def _check_length(
    value: str,
    label: str,
    min_len: int | None,
    max_len: int | None,
    max_text: str | None = None,
) -> str:
    if min_len is not None and len(value) < min_len:
        raise ValueError(f"{label} must be at least {min_len} characters")
    if max_len is not None and len(value) > max_len:
        raise ValueError(f"{label} must not exceed {max_text or max_len} characters")
    return value


def _check_title(value: str) -> str:
    _check_length(value, "Title", 5, 200)
    if not value.strip():
        raise ValueError("Title cannot be empty")
    return value


# ==================== Schemas ====================


class ThreadCreate(BaseModel):
    """New thread with its opening post."""

    title: str
    content: str
    category_id: int
    tags: list[str] | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _check_title(v)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _check_length(v, "Content", 10, 10000, "10,000")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and len(v) > 5:
            raise ValueError("Maximum 5 tags allowed")
        return v


class ThreadUpdate(BaseModel):
    """Thread edit; moderation flags are checked by the service."""

    title: str | None = None
    content: str | None = None
    category_id: int | None = None
    tags: list[str] | None = None
    is_pinned: bool | None = None
    is_locked: bool | None = None
    is_hidden: bool | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_title(v)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_length(v, "Content", 10, 10000, "10,000")


class PostCreate(BaseModel):
    """Reply to a thread."""

    content: str
    thread_id: int

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v:
            raise ValueError("Content is required")
        return _check_length(v, "Content", None, 5000, "5,000")


class ProfileUpdate(BaseModel):
    """Editable profile fields. Omitted fields are left untouched."""

    name: str | None = None
    image: str | None = None
    bio: str | None = None
    signature: str | None = None
    website: str | None = None
    location: str | None = None
    display_username: str | None = None

    @field_validator("bio")
    @classmethod
    def validate_bio(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Bio", None, 500)

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Signature", None, 200)

    @field_validator("website")
    @classmethod
    def validate_website(cls, v: str | None) -> str | None:
        if v and not WEBSITE_PATTERN.match(v):
            raise ValueError("Must be a valid URL")
        return v

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Location", None, 100)

    @field_validator("display_username")
    @classmethod
    def validate_display_username(cls, v: str | None) -> str | None:
        if v is None:
            return v
        _check_length(v, "Display name", 3, 30)
        if not USERNAME_PATTERN.match(v):
            raise ValueError(
                "Display name can only contain letters, numbers, hyphens, and underscores"
            )
        return v


class CategoryCreate(BaseModel):
    """Category fields."""

    name: str
    description: str | None = None
    color: str | None = None
    icon_class: str | None = None
    display_order: int | None = None
    is_hidden: bool | None = None
    parent_id: int | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_length(v, "Category name", 3, 50)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Description", None, 200)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        if v is not None and not HEX_COLOR_PATTERN.match(v):
            raise ValueError("Must be a valid hex color")
        return v


class CategoryUpdate(CategoryCreate):
    """Partial category edit."""

    name: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Category name", 3, 50)


class ReportCreate(BaseModel):
    """Report on a post, thread or user."""

    target_type: Literal["post", "thread", "user"]
    target_id: int
    reason: Literal[
        "spam",
        "harassment",
        "inappropriate_content",
        "misinformation",
        "copyright_violation",
        "other",
    ]
    description: str | None = None

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str | None) -> str | None:
        return v if v is None else _check_length(v, "Description", None, 1000, "1,000")


# ==================== Helpers ====================


def format_validation_errors(exc: PydanticValidationError) -> str:
    """Join pydantic error messages the way the API reports them."""
    return ", ".join(
        str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        for err in exc.errors()
    )


async def validate_with_rate_limit(
    model: type[ModelT],
    data: dict[str, Any],
    action: str,
    identifier: str | None,
    cache: CacheService,
    limits: tuple[int, int] | None = None,
) -> ModelT:
    """
    Rate-limit an action, then validate its payload.

    Args:
        model: Pydantic model to validate against
        data: Raw payload
        action: Rate limit action name
        identifier: Client identity (user id), anonymous when None
        cache: Rate limit store
        limits: (window_seconds, max_requests); no rate limit when None

    Raises:
        RateLimitedError: When the limit is exceeded
        ValidationError: With all messages joined by ", "
    """
    if limits:
        window_seconds, max_requests = limits
        allowed, reset_at = await cache.check_rate_limit(
            action, identifier or "anonymous", window_seconds, max_requests
        )
        if not allowed:
            raise RateLimitedError(reset_at=reset_at)

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(format_validation_errors(e)) from e


def sanitize_content(content: str) -> str:
    """Strip script/iframe blocks and inline event handlers."""
    content = _SCRIPT_RE.sub("", content)
    content = _IFRAME_RE.sub("", content)
    content = _EVENT_HANDLER_RE.sub("", content)
    return content.strip()


def contains_profanity(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in PROFANITY_WORDS)


def extract_urls(text: str) -> list[str]:
    return URL_PATTERN.findall(text)


def is_spam(content: str) -> bool:
    """Repeated characters, five or more links, or stock spam phrases."""
    if _REPEATED_CHARS_RE.search(content):
        return True
    if len(extract_urls(content)) >= 5:
        return True
    return bool(_SPAM_PHRASES_RE.search(content))


def validate_image_url(url: str) -> bool:
    return bool(IMAGE_URL_PATTERN.search(url))


def validate_username(username: str) -> tuple[bool, str | None]:
    """
    Check a username against length, charset and reserved names.

    Returns:
        (valid, error message)
    """
    if len(username) < 3:
        return False, "Username must be at least 3 characters"
    if len(username) > 30:
        return False, "Username must not exceed 30 characters"
    if not USERNAME_PATTERN.match(username):
        return False, "Username can only contain letters, numbers, hyphens, and underscores"
    if username.lower() in RESERVED_USERNAMES:
        return False, "This username is reserved"
    return True, None
