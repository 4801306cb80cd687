"""orgctl: admin CLI for inspecting and allocating user orgs."""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from typing import Any, Callable

import click
import httpx
import redis
from pymongo.errors import PyMongoError

from org_dispenser.control_plane.keygen import KeyGenerator, UUIDGUIDMaker
from org_dispenser.control_plane.orgs import OrgManager, OrgManagerFactory, new_org_manager
from org_dispenser.gateway.cloud_controller import CloudControllerClient
from org_dispenser.gateway.tokens import (
    OAuthTokens,
    Tokens,
    http_user_info,
    require_domain,
    resolve_username,
)
from org_dispenser.shared.config import ServiceBindings, Settings
from org_dispenser.shared.exceptions import OrgDispenserError
from org_dispenser.shared.logging import bind_context, clear_context, configure_logging, get_logger
from org_dispenser.shared.models import PivotOrg
from org_dispenser.shared.mongo_store import MongoIntegration
from org_dispenser.shared.redis_store import RedisIntegration
from org_dispenser.shared.validation import ValidationError

ManagerBuilder = Callable[[str, Tokens], OrgManager]

_HANDLED = (OrgDispenserError, ValidationError, httpx.HTTPError, PyMongoError, redis.RedisError)


def _handle_error(e: Exception) -> None:
    """Print a user-friendly error for dispenser failures."""
    click.echo(f"Error [{type(e).__name__}]: {e}", err=True)
    raise SystemExit(1)


def _echo_org(org: PivotOrg) -> None:
    data = asdict(org)
    data["created_at"] = org.created_at.isoformat()
    click.echo(json.dumps(data, indent=2))


def build_manager(settings: Settings, factory: OrgManagerFactory = new_org_manager) -> ManagerBuilder:
    """Wire bound Mongo/Redis services and the cloud controller into OrgManagers."""
    bindings = ServiceBindings.from_env()
    mongo = MongoIntegration.from_bindings(
        bindings,
        settings.mongo_service_name,
        settings.mongo_uri_name,
        settings.mongo_collection_name,
    )
    redis_int = RedisIntegration.from_bindings(bindings, settings.redis_service_name)
    keygen = KeyGenerator(
        redis_int.doer(),
        UUIDGUIDMaker(),
        ttl_seconds=settings.reservation_ttl_seconds or None,
    )

    def build(username: str, tokens: Tokens) -> OrgManager:
        client = CloudControllerClient(tokens, cc_target=settings.cc_api_url)
        return factory(
            username,
            get_logger(username=username),
            tokens,
            mongo.collection(),
            client,
            keygen,
        )

    return build


def _username(obj: dict[str, Any], username: str | None, tokens: Tokens) -> str:
    """Explicit usernames must be in the allowed domain; otherwise ask the identity provider."""
    settings: Settings = obj["settings"]
    if username is not None:
        return require_domain(username, settings.allowed_domain)
    if "user_info" not in obj:
        obj["user_info"] = http_user_info(settings.user_info_url)
    return resolve_username(tokens, obj["user_info"], settings.allowed_domain)


def _manager(ctx: click.Context, username: str | None) -> OrgManager:
    obj: dict[str, Any] = ctx.obj
    clear_context()
    tokens = OAuthTokens.from_jwt(obj["token"])
    username = _username(obj, username, tokens)
    if "builder" not in obj:
        obj["builder"] = build_manager(obj["settings"])
    bind_context(username=username)
    return obj["builder"](username, tokens)


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.option("--token", default=None, help="Cloud controller access token (default: $CF_ACCESS_TOKEN)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, token: str | None) -> None:
    """Org dispenser CLI. Show, allocate and release user orgs.

    USERNAME may be left out to act on the account that owns the token.
    """
    ctx.ensure_object(dict)
    settings = ctx.obj.get("settings") or Settings.from_env()
    ctx.obj["settings"] = settings
    ctx.obj["token"] = token or os.environ.get("CF_ACCESS_TOKEN", "")
    configure_logging(log_level or settings.log_level)


@cli.command("show")
@click.argument("username", required=False)
@click.pass_context
def show(ctx: click.Context, username: str | None) -> None:
    """Show the org allocated to a user."""
    try:
        _echo_org(_manager(ctx, username).show())
    except _HANDLED as e:
        _handle_error(e)


@cli.command("create")
@click.argument("username", required=False)
@click.option("--force", is_flag=True, help="Provision even if the user already has an org")
@click.pass_context
def create(ctx: click.Context, username: str | None, force: bool) -> None:
    """Allocate an org to a user."""
    try:
        manager = _manager(ctx, username)
        _echo_org(manager.create() if force else manager.safe_create())
    except _HANDLED as e:
        _handle_error(e)


@cli.command("remove")
@click.argument("username", required=False)
@click.pass_context
def remove(ctx: click.Context, username: str | None) -> None:
    """Delete a user's org record."""
    try:
        _manager(ctx, username).remove()
        click.echo("removed")
    except _HANDLED as e:
        _handle_error(e)


@cli.command("reservation")
@click.argument("username", required=False)
@click.pass_context
def reservation(ctx: click.Context, username: str | None) -> None:
    """Show the pending reservation key for a user."""
    try:
        manager = _manager(ctx, username)
        found = manager.keygen.get(manager.username)
    except _HANDLED as e:
        _handle_error(e)
        return
    if found is None:
        click.echo("not found")
        return
    click.echo(json.dumps(asdict(found), indent=2))


if __name__ == "__main__":
    cli()
