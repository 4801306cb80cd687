"""Core data models for the org dispenser."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from org_dispenser.shared.exceptions import GUIDFormatError


def _utc_now() -> datetime:
    # BSON dates hold milliseconds.
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


# --- Enums ---

class OrgState(str, Enum):
    NO_ORG = "no_org"
    ORG_EXISTS = "org_exists"
    RESERVATION_PENDING = "reservation_pending"
    ORG_CREATED = "org_created"
    ALLOCATION_FAILED = "allocation_failed"


# --- GUID ---

@dataclass(frozen=True)
class GUID:
    prefix: str
    value: str

    def __str__(self) -> str:
        return f"{self.prefix}:{self.value}"

    @classmethod
    def parse(cls, raw: str) -> GUID:
        """Split a "<prefix>:<guid>" string. Exactly one separator is allowed."""
        if raw.count(":") != 1:
            raise GUIDFormatError(f"expected '<prefix>:<guid>', got {raw!r}")
        prefix, value = raw.split(":")
        if not value:
            raise GUIDFormatError(f"empty guid in {raw!r}")
        return cls(prefix=prefix, value=value)


# --- Reservation ---

@dataclass
class Reservation:
    key: str
    active: bool = False
    details: str = ""


# --- Org record ---

@dataclass
class PivotOrg:
    email: str
    org_name: str = ""
    org_guid: str = ""
    active: bool = True
    details: str = ""
    reservation_key: str = ""
    created_at: datetime = field(default_factory=_utc_now)

    def to_document(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> PivotOrg:
        """Build a record from a stored document, ignoring storage-only keys like _id."""
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in doc.items() if k in names}
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            data["created_at"] = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        elif created_at is None:
            data.pop("created_at", None)
        return cls(**data)
