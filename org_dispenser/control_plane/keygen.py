"""Reservation key generation and lookup against a key-value store.

A reservation is a Redis hash stored at "<owner>:<guid>" with a "guid" field
and a "details" field holding a JSON blob ({"active": ..., "details": ...}).
The hash and its expiry are written in one transaction. Lookup walks SCAN
with the owner glob-escaped, so an owner containing "*" or "?" only ever
matches its own keys. The generator is a single-attempt adapter: executor
errors are raised to the caller untouched.
"""

from __future__ import annotations

import json
import re
import uuid
from collections.abc import Sequence
from typing import Any, Callable, Protocol

from org_dispenser.shared.exceptions import MalformedReplyError
from org_dispenser.shared.logging import get_logger
from org_dispenser.shared.models import GUID, Reservation

log = get_logger()

SCAN_COUNT = 100

_GLOB_SPECIAL = re.compile(r"[*?\[\]\\]")


class Doer(Protocol):
    def do(self, command: str, *args: Any) -> Any: ...

    def do_all(self, *commands: tuple[Any, ...]) -> list[Any]: ...


class GUIDMaker(Protocol):
    def create(self) -> GUID: ...


class UUIDGUIDMaker:
    """Random uuid4 GUIDs under a fixed prefix."""

    def __init__(self, prefix: str = "session") -> None:
        self._prefix = prefix

    def create(self) -> GUID:
        return GUID(prefix=self._prefix, value=str(uuid.uuid4()))


class RawGUIDMaker:
    """Adapts a producer of "<prefix>:<guid>" strings.

    A string without exactly one separator raises GUIDFormatError; that is a
    broken producer, not something to recover from.
    """

    def __init__(self, producer: Callable[[], str]) -> None:
        self._producer = producer

    def create(self) -> GUID:
        return GUID.parse(self._producer())


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, str):
        return value
    raise MalformedReplyError(f"expected bytes or str element, got {type(value).__name__}", value)


def _parse_details(blob: str) -> dict[str, Any]:
    body = blob.strip()
    if not body.startswith("{"):
        body = "{" + body + "}"
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedReplyError(f"detail blob is not JSON: {e.msg}", blob) from e
    if not isinstance(data, dict):
        raise MalformedReplyError("detail blob is not an object", blob)
    active = data.get("active", False)
    if not isinstance(active, bool):
        raise MalformedReplyError("'active' must be a boolean", blob)
    return {"active": active, "details": str(data.get("details", ""))}


def parse_reservation_reply(reply: Any) -> Reservation | None:
    """Unpack a [key, detail-blob] reply. None means there is no reservation."""
    if reply is None:
        return None
    if isinstance(reply, (bytes, str)) or not isinstance(reply, Sequence):
        raise MalformedReplyError(f"expected a sequence, got {type(reply).__name__}", reply)
    if len(reply) < 2:
        raise MalformedReplyError(f"expected at least 2 elements, got {len(reply)}", reply)
    key, blob = reply[0], reply[1]
    if key is None and blob is None:
        return None
    if key is None or blob is None:
        raise MalformedReplyError("partial reply", reply)
    fields = _parse_details(_text(blob))
    return Reservation(key=_text(key), active=fields["active"], details=fields["details"])


def _glob_escape(value: str) -> str:
    """Escape Redis MATCH metacharacters so `value` only matches itself."""
    return _GLOB_SPECIAL.sub(r"\\\g<0>", value)


def _cursor(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(_text(value))
    except ValueError:
        raise MalformedReplyError("scan cursor is not an integer", value) from None


class KeyGenerator:
    """Creates and looks up reservation keys."""

    def __init__(
        self,
        doer: Doer,
        guid_maker: GUIDMaker,
        ttl_seconds: int | None = None,
    ) -> None:
        self._doer = doer
        self._guid_maker = guid_maker
        self._ttl = ttl_seconds

    def create(self, owner: str = "", details: str = "") -> str:
        """Return a fresh bare GUID, recording it as an active reservation for `owner`."""
        guid = self._guid_maker.create()
        if owner:
            key = f"{owner}:{guid.value}"
            blob = json.dumps({"active": True, "details": details})
            hset = ("HSET", key, "guid", guid.value, "details", blob)
            if self._ttl:
                self._doer.do_all(hset, ("EXPIRE", key, self._ttl))
            else:
                self._doer.do(*hset)
            log.info("reservation_created", owner=owner, reservation_key=guid.value)
        return guid.value

    def get(self, owner: str) -> Reservation | None:
        key = self._find_key(owner)
        if key is None:
            return None
        reply = self._doer.do("HMGET", key, "guid", "details")
        return parse_reservation_reply(reply)

    def exists(self, owner: str) -> bool:
        reservation = self.get(owner)
        return reservation is not None and reservation.active

    def _find_key(self, owner: str) -> str | None:
        """First key stored for `owner`, walking SCAN until the cursor returns to 0."""
        pattern = f"{_glob_escape(owner)}:*"
        cursor = 0
        while True:
            reply = self._doer.do("SCAN", cursor, "MATCH", pattern, "COUNT", SCAN_COUNT)
            if reply is None:
                return None
            if isinstance(reply, (bytes, str)) or not isinstance(reply, Sequence) or len(reply) != 2:
                raise MalformedReplyError("expected a [cursor, keys] scan reply", reply)
            cursor, keys = _cursor(reply[0]), reply[1]
            if isinstance(keys, (bytes, str)) or not isinstance(keys, Sequence):
                raise MalformedReplyError(f"expected a key list, got {type(keys).__name__}", keys)
            if keys:
                return _text(keys[0])
            if cursor == 0:
                return None
