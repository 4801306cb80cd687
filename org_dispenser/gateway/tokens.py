"""OAuth token source and user identity resolution.

Obtaining the token is somebody else's job; this module only carries it
around and reads what it needs from it. The user-info lookup is passed in
as a callable so tests and callers can substitute their own.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx
import jwt

from org_dispenser.shared.exceptions import UnauthorizedDomainError
from org_dispenser.shared.logging import get_logger
from org_dispenser.shared.validation import ValidationError, validate_username

log = get_logger()


class Tokens(Protocol):
    def access(self) -> str: ...

    def refresh(self) -> str: ...

    def expired(self) -> bool: ...

    def expiry_time(self) -> datetime | None: ...


UserInfoExtractor = Callable[[Tokens], dict[str, Any]]


@dataclass
class OAuthTokens:
    access_token: str = ""
    refresh_token: str = ""
    expires_at: float = 0.0  # epoch seconds, 0 = never

    def access(self) -> str:
        return self.access_token

    def refresh(self) -> str:
        return self.refresh_token

    def expired(self) -> bool:
        return time.time() > self.expires_at if self.expires_at > 0 else False

    def expiry_time(self) -> datetime | None:
        if self.expires_at <= 0:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    @classmethod
    def from_token_response(cls, payload: dict[str, Any]) -> OAuthTokens:
        """Build from an OAuth2 token endpoint response."""
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload.get("access_token", ""),
            refresh_token=payload.get("refresh_token", ""),
            expires_at=time.time() + float(expires_in) if expires_in else 0.0,
        )

    @classmethod
    def from_jwt(cls, access_token: str, refresh_token: str = "") -> OAuthTokens:
        """Read the expiry from the access token's exp claim.

        The signature is not checked here; the cloud controller verifies the
        token on every call.
        """
        try:
            claims = jwt.decode(access_token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            log.warning("access_token_not_jwt")
            claims = {}
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=float(claims.get("exp", 0) or 0),
        )


def resolve_username(
    tokens: Tokens,
    get_user_info: UserInfoExtractor,
    domain: str,
) -> str:
    """Pick the account email that belongs to `domain`.

    Expects user info shaped like {"domain": ..., "emails": [{"value": ...}]}.
    """
    info = get_user_info(tokens)
    user_domain = info.get("domain", "")
    if user_domain != domain:
        raise UnauthorizedDomainError(user_domain, domain)

    suffix = "@" + domain.lower()
    for entry in info.get("emails", []):
        value = entry.get("value", "") if isinstance(entry, dict) else ""
        if value.lower().endswith(suffix):
            return validate_username(value)
    raise ValidationError("emails", f"no address in domain {domain!r}")


def require_domain(username: str, domain: str) -> str:
    """Reject a username whose address is outside `domain`."""
    username = validate_username(username)
    user_domain = username.rsplit("@", 1)[1].lower()
    if user_domain != domain.lower():
        raise UnauthorizedDomainError(user_domain, domain)
    return username


def http_user_info(url: str, client: httpx.Client | None = None, timeout: float = 30.0) -> UserInfoExtractor:
    """User-info extractor that GETs `url` with the caller's bearer token."""
    http = client or httpx.Client(timeout=timeout)

    def get_user_info(tokens: Tokens) -> dict[str, Any]:
        resp = http.get(
            url,
            headers={"Authorization": f"Bearer {tokens.access()}", "Accept": "application/json"},
        )
        if not resp.is_success:
            log.error("user_info_failed", status=resp.status_code)
            resp.raise_for_status()
        return resp.json()

    return get_user_info
