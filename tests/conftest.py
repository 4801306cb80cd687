"""Shared fixtures and fakes for all tests."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from org_dispenser.control_plane.keygen import KeyGenerator
from org_dispenser.control_plane.orgs import OrgManager
from org_dispenser.gateway.cloud_controller import CloudControllerClient
from org_dispenser.gateway.tokens import OAuthTokens
from org_dispenser.shared.models import GUID
from org_dispenser.shared.store import InMemoryPersistence

USERNAME = "jdoe@pivotal.io"
DETAIL_BLOB = b'"active":  true,"details": "put somethings here"'


class DoerCallFailure(Exception):
    """Raised by FakeDoer when told to fail."""


@dataclass
class FakeDoer:
    """Scripted key-value executor.

    SCAN finds one key named after the guid and HMGET answers
    [guid, detail blob], unless told to fail or to answer nil.
    """

    guid: str = "abc-123"
    fail: bool = False
    nil_response: bool = False
    calls: list[tuple[Any, ...]] = field(default_factory=list)

    def do(self, command: str, *args: Any) -> Any:
        self.calls.append((command, *args))
        if self.fail:
            raise DoerCallFailure("Failure calling doer")
        if self.nil_response:
            return None
        if command == "SCAN":
            return [b"0", [self.guid.encode()]]
        if command == "HMGET":
            return [self.guid.encode(), DETAIL_BLOB]
        return 1

    def do_all(self, *commands: tuple[Any, ...]) -> list[Any]:
        return [self.do(*command) for command in commands]


def _redis_glob(pattern: str) -> re.Pattern[str]:
    """Compile a Redis MATCH pattern, honouring backslash escapes."""
    out, i = [], 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[" and "]" in pattern[i + 1:]:
            end = pattern.index("]", i + 1)
            out.append("[" + re.escape(pattern[i + 1:end]) + "]")
            i = end + 1
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out), re.DOTALL)


class HashDoer:
    """In-memory Redis hashes with real SCAN MATCH semantics."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, Any]] = {}
        self.ttls: dict[str, int] = {}

    def do(self, command: str, *args: Any) -> Any:
        if command == "HSET":
            key, pairs = args[0], args[1:]
            self.hashes.setdefault(key, {}).update(zip(pairs[::2], pairs[1::2]))
            return len(pairs) // 2
        if command == "EXPIRE":
            self.ttls[args[0]] = args[1]
            return 1
        if command == "SCAN":
            matcher = _redis_glob(args[2])
            return [0, [k.encode() for k in self.hashes if matcher.fullmatch(k)]]
        if command == "HMGET":
            found = self.hashes.get(args[0], {})
            return [found.get(name) for name in args[1:]]
        raise AssertionError(f"unexpected command {command}")

    def do_all(self, *commands: tuple[Any, ...]) -> list[Any]:
        return [self.do(*command) for command in commands]


class StaticGUIDMaker:
    def __init__(self, raw: str = "session:abc-123") -> None:
        self._guid = GUID.parse(raw)

    def create(self) -> GUID:
        return self._guid


class FakeCloudController:
    """httpx transport handler standing in for the cloud controller.

    Live orgs are tracked in `orgs` (guid -> name). With unique_names set,
    creating an org whose name is already live fails with 400, as the real
    cloud controller does.
    """

    def __init__(
        self,
        org_guid: str = "org-guid-1",
        create_status: int = 201,
        role_status: int = 201,
        delete_status: int = 204,
        unique_names: bool = False,
    ) -> None:
        self.org_guid = org_guid
        self.create_status = create_status
        self.role_status = role_status
        self.delete_status = delete_status
        self.unique_names = unique_names
        self.orgs: dict[str, str] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/v2/organizations":
            if self.create_status >= 300:
                return httpx.Response(self.create_status, json={"description": "nope"})
            name = json.loads(request.content)["name"]
            if self.unique_names and name in self.orgs.values():
                return httpx.Response(400, json={"description": "name taken"})
            self.orgs[self.org_guid] = name
            return httpx.Response(
                self.create_status,
                json={"metadata": {"guid": self.org_guid}, "entity": {"name": name}},
            )
        if request.method == "DELETE":
            if self.delete_status >= 300:
                return httpx.Response(self.delete_status, json={"description": "delete failed"})
            self.orgs.pop(request.url.path.rsplit("/", 1)[-1], None)
            return httpx.Response(self.delete_status)
        if request.method == "PUT" and self.role_status >= 300:
            return httpx.Response(self.role_status, json={"description": "role assignment failed"})
        return httpx.Response(201, json={})

    @property
    def create_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")


@pytest.fixture
def store():
    return InMemoryPersistence()


@pytest.fixture
def doer():
    return FakeDoer()


@pytest.fixture
def keygen(doer):
    return KeyGenerator(doer, StaticGUIDMaker())


@pytest.fixture
def tokens():
    return OAuthTokens(access_token="access-abc", refresh_token="refresh-abc")


@pytest.fixture
def cloud_controller():
    return FakeCloudController()


@pytest.fixture
def auth_client(tokens, cloud_controller):
    return CloudControllerClient(
        tokens,
        cc_target="https://api.example.com",
        client=httpx.Client(transport=httpx.MockTransport(cloud_controller)),
    )


@pytest.fixture
def manager(store, tokens, auth_client, keygen):
    return OrgManager(USERNAME, None, tokens, store, auth_client, keygen)
