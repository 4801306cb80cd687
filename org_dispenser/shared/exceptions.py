"""Exception hierarchy for the org dispenser.

All dispenser-specific exceptions inherit from OrgDispenserError. Only the
persistence wrapper collapses storage failures into a sentinel
(CannotAddOrgRecordError); every other layer lets the original exception
through so callers can tell causes apart.
"""

from __future__ import annotations


class OrgDispenserError(Exception):
    """Base exception for all org dispenser errors."""


# --- Lookup errors ---


class NotFoundError(OrgDispenserError):
    """Requested resource does not exist."""


class RecordNotFoundError(NotFoundError):
    """No document matched the query."""


# --- Store errors ---


class StoreError(OrgDispenserError):
    """Base for persistence layer failures."""


class CannotAddOrgRecordError(StoreError):
    """Upsert of an org record failed. The storage cause is never attached."""

    MESSAGE = "cannot add organization record"

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


# --- Key generation errors ---


class KeyGenError(OrgDispenserError):
    """Base for reservation key failures."""


class MalformedReplyError(KeyGenError):
    """Key-value store reply did not have the expected shape."""

    def __init__(self, reason: str, reply: object = None) -> None:
        self.reason = reason
        self.reply = reply
        super().__init__(f"malformed reply: {reason}")


class GUIDFormatError(KeyGenError):
    """GUID producer output broke the "<prefix>:<guid>" contract."""


# --- External service errors ---


class ProvisioningError(OrgDispenserError):
    """Cloud controller refused or garbled an org provisioning call."""

    def __init__(self, status: int, reason: str = "") -> None:
        self.status = status
        self.reason = reason
        super().__init__(f"provisioning failed ({status}): {reason}" if reason else f"provisioning failed ({status})")


class UnauthorizedDomainError(OrgDispenserError):
    """Authenticated account does not belong to the allowed domain."""

    def __init__(self, domain: str, allowed: str) -> None:
        self.domain = domain
        self.allowed = allowed
        super().__init__(f"domain {domain!r} is not allowed (expected {allowed!r})")


class ConfigurationError(OrgDispenserError):
    """Invalid or missing configuration."""
