"""Input validation for the org dispenser. All boundary inputs must pass through here."""

from __future__ import annotations

import re
from urllib.parse import urlparse

_EMAIL_PATTERN = re.compile(r"^[^@\s:]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_ORG_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-_.]{0,63}$")
_ORG_NAME_INVALID = re.compile(r"[^a-z0-9\-_.]")
_ORG_PREFIX = "pivot-"


class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_username(username: str, field: str = "username") -> str:
    """Validate an authenticated identity (an email address)."""
    if not username or not username.strip():
        raise ValidationError(field, "cannot be empty")
    username = username.strip()
    if not _EMAIL_PATTERN.match(username):
        raise ValidationError(field, "must be an email address")
    return username


def validate_org_name(name: str, field: str = "org_name") -> str:
    """Validate an org name the cloud controller will accept."""
    if not name or not name.strip():
        raise ValidationError(field, "cannot be empty")
    name = name.strip()
    if not _ORG_NAME_PATTERN.match(name):
        raise ValidationError(
            field,
            "must be 1-64 chars, start with a lowercase letter or digit, contain only a-z/0-9/hyphens/underscores/dots",
        )
    return name


def org_name_for(username: str) -> str:
    """Derive the org name handed to a user: 'pivot-' plus the email's local part."""
    local = username.split("@", 1)[0].lower()
    return validate_org_name((_ORG_PREFIX + _ORG_NAME_INVALID.sub("-", local))[:64])


def validate_url(url: str, field: str = "url") -> str:
    """Validate an http(s) URL with a hostname."""
    if not url or not url.strip():
        raise ValidationError(field, "cannot be empty")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(field, "must use http or https scheme")
    if not parsed.hostname:
        raise ValidationError(field, "must have a valid hostname")
    return url.strip().rstrip("/")
