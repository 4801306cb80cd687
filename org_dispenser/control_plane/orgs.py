"""Org allocation: hands each user at most one active org.

safe_create is the path inbound requests take. It is idempotent for a user
who already has an active record. Two simultaneous first-time calls for the
same user can both provision: the reservation key is per-GUID, not
per-user, so nothing serializes them and the last upsert wins.

Org names are derived from the username and the cloud controller keeps them
unique, so an org that was created but could not be assigned or recorded is
deleted again before the error is raised. Otherwise every retry would hit a
name clash.
"""

from __future__ import annotations

from typing import Any, Callable

from org_dispenser.control_plane.keygen import KeyGenerator
from org_dispenser.gateway.cloud_controller import AuthRequestCreator, assign_user, create_org, delete_org
from org_dispenser.gateway.tokens import Tokens
from org_dispenser.shared.exceptions import ProvisioningError, RecordNotFoundError
from org_dispenser.shared.logging import get_logger
from org_dispenser.shared.models import OrgState, PivotOrg
from org_dispenser.shared.store import Persistence
from org_dispenser.shared.validation import org_name_for, validate_username


class OrgManager:
    """Show, create and safely create the org owned by one user."""

    def __init__(
        self,
        username: str,
        log: Any,
        tokens: Tokens,
        store: Persistence,
        auth_client: AuthRequestCreator,
        keygen: KeyGenerator,
    ) -> None:
        self.username = validate_username(username)
        self.log = log if log is not None else get_logger(username=self.username)
        self.tokens = tokens
        self.store = store
        self.auth_client = auth_client
        self.keygen = keygen
        self.state = OrgState.NO_ORG

    def _selector(self) -> dict[str, str]:
        return {"email": self.username}

    def show(self) -> PivotOrg:
        """Return the user's stored org. RecordNotFoundError if there is none."""
        try:
            doc = self.store.find_one(self._selector())
        except RecordNotFoundError:
            self.state = OrgState.NO_ORG
            raise
        self.state = OrgState.ORG_EXISTS
        return PivotOrg.from_document(doc)

    def create(self) -> PivotOrg:
        """Provision and persist an org without checking for an existing one."""
        try:
            return self._allocate(reservation_key="")
        except Exception:
            self.state = OrgState.ALLOCATION_FAILED
            raise

    def safe_create(self) -> PivotOrg:
        """Return the user's active org, provisioning one only if there is none."""
        try:
            try:
                existing = self.show()
            except RecordNotFoundError:
                existing = None

            if existing is not None and existing.active:
                self.log.info("org_already_allocated", org_guid=existing.org_guid)
                return existing

            reservation_key = self.keygen.create(self.username, details="org allocation pending")
            self.state = OrgState.RESERVATION_PENDING
            return self._allocate(reservation_key)
        except Exception as e:
            self.state = OrgState.ALLOCATION_FAILED
            self.log.warning("org_allocation_failed", error_type=type(e).__name__, error=str(e))
            raise

    def remove(self) -> None:
        """Delete the user's org record. Store errors are raised as-is."""
        self.store.remove(self._selector())
        self.state = OrgState.NO_ORG
        self.log.info("org_record_removed")

    def _allocate(self, reservation_key: str) -> PivotOrg:
        if self.tokens.expired():
            raise ProvisioningError(401, "access token expired")

        org_name = org_name_for(self.username)
        org_guid = create_org(self.auth_client, org_name)
        try:
            assign_user(self.auth_client, org_guid, self.username)
            record = PivotOrg(
                email=self.username,
                org_name=org_name,
                org_guid=org_guid,
                active=True,
                details="allocated",
                reservation_key=reservation_key,
            )
            self.store.upsert(self._selector(), record.to_document())
        except Exception:
            self._release(org_guid)
            raise

        self.state = OrgState.ORG_CREATED
        self.log.info("org_allocated", org_name=org_name, org_guid=org_guid, reservation_key=reservation_key)
        return record

    def _release(self, org_guid: str) -> None:
        """Delete a half-provisioned org so its name can be taken again."""
        try:
            delete_org(self.auth_client, org_guid)
        except Exception as e:
            self.log.error("org_release_failed", org_guid=org_guid, error_type=type(e).__name__, error=str(e))
        else:
            self.log.info("org_released", org_guid=org_guid)


OrgManagerFactory = Callable[
    [str, Any, Tokens, Persistence, AuthRequestCreator, KeyGenerator], OrgManager
]


def new_org_manager(
    username: str,
    log: Any,
    tokens: Tokens,
    store: Persistence,
    auth_client: AuthRequestCreator,
    keygen: KeyGenerator,
) -> OrgManager:
    return OrgManager(username, log, tokens, store, auth_client, keygen)
