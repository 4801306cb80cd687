"""Redis command executor used by the key generator."""

from __future__ import annotations

from typing import Any

import redis

from org_dispenser.shared.config import ServiceBindings
from org_dispenser.shared.exceptions import ConfigurationError
from org_dispenser.shared.logging import get_logger

log = get_logger()


class RedisDoer:
    """Issues raw commands against Redis. Replies are left undecoded (bytes)."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def do(self, command: str, *args: Any) -> Any:
        return self._client.execute_command(command, *args)

    def do_all(self, *commands: tuple[Any, ...]) -> list[Any]:
        """Run commands in one MULTI/EXEC transaction; replies in order."""
        pipe = self._client.pipeline(transaction=True)
        for command in commands:
            pipe.execute_command(*command)
        return pipe.execute()


class RedisIntegration:
    """Builds a Redis client from the credentials of a bound service."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_bindings(cls, bindings: ServiceBindings, service_name: str) -> RedisIntegration:
        creds = bindings.with_name(service_name)
        password = creds.get("password") or None
        if creds.get("uri"):
            client = redis.Redis.from_url(creds["uri"], password=password)
        elif creds.get("host"):
            client = redis.Redis(
                host=creds["host"],
                port=int(creds.get("port", 6379)),
                password=password,
            )
        else:
            raise ConfigurationError(f"redis service {service_name!r} has no host or uri credential")
        log.info("redis_configured", service=service_name)
        return cls(client)

    def doer(self) -> RedisDoer:
        return RedisDoer(self._client)

    def close(self) -> None:
        self._client.close()
