"""Cloud controller client used to provision orgs for users.

Requests are built separately from being sent (create_auth_request, then
http_client().send) so the org manager can be driven against any
AuthRequestCreator.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from org_dispenser.gateway.tokens import Tokens
from org_dispenser.shared.exceptions import ProvisioningError
from org_dispenser.shared.logging import get_logger
from org_dispenser.shared.validation import validate_url

log = get_logger()

DEFAULT_CC_TARGET = "https://api.run.pivotal.io"


class AuthRequestCreator(Protocol):
    @property
    def cc_target(self) -> str: ...

    def create_auth_request(
        self, verb: str, request_url: str, path: str, args: Any
    ) -> httpx.Request: ...

    def http_client(self) -> httpx.Client: ...


class CloudControllerClient:
    """Builds bearer-authenticated cloud controller requests."""

    def __init__(
        self,
        tokens: Tokens,
        cc_target: str = DEFAULT_CC_TARGET,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._tokens = tokens
        self._cc_target = validate_url(cc_target, field="cc_target")
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def cc_target(self) -> str:
        return self._cc_target

    def create_auth_request(
        self, verb: str, request_url: str, path: str, args: Any
    ) -> httpx.Request:
        headers = {
            "Authorization": f"bearer {self._tokens.access()}",
            "Accept": "application/json",
        }
        url = request_url.rstrip("/") + path
        if args is None:
            return httpx.Request(verb, url, headers=headers)
        return httpx.Request(verb, url, headers=headers, json=args)

    def http_client(self) -> httpx.Client:
        return self._client

    def close(self) -> None:
        self._client.close()


def _send(creator: AuthRequestCreator, verb: str, path: str, args: Any) -> httpx.Response:
    req = creator.create_auth_request(verb, creator.cc_target, path, args)
    resp = creator.http_client().send(req)
    if not resp.is_success:
        log.error("cc_request_failed", verb=verb, path=path, status=resp.status_code)
        raise ProvisioningError(resp.status_code, resp.text[:200])
    return resp


def create_org(creator: AuthRequestCreator, org_name: str) -> str:
    """Create an org and return its GUID.

    Transport failures surface as httpx.HTTPError; refusals and unusable
    bodies as ProvisioningError.
    """
    resp = _send(creator, "POST", "/v2/organizations", {"name": org_name})
    try:
        guid = resp.json()["metadata"]["guid"]
    except (ValueError, KeyError, TypeError):
        raise ProvisioningError(resp.status_code, "response has no metadata.guid")
    log.info("cc_org_created", org_name=org_name, org_guid=guid)
    return guid


def assign_user(creator: AuthRequestCreator, org_guid: str, username: str) -> None:
    """Make `username` a user and a manager of the org."""
    for role in ("users", "managers"):
        _send(creator, "PUT", f"/v2/organizations/{org_guid}/{role}", {"username": username})
    log.info("cc_user_assigned", org_guid=org_guid, username=username)


def delete_org(creator: AuthRequestCreator, org_guid: str) -> None:
    """Delete an org and everything in it, freeing its name."""
    _send(creator, "DELETE", f"/v2/organizations/{org_guid}?recursive=true", None)
    log.info("cc_org_deleted", org_guid=org_guid)
