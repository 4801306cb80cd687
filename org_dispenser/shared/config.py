"""Process configuration from environment variables and bound services."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from org_dispenser.shared.exceptions import ConfigurationError

DEFAULT_USER_INFO_URL = "https://www.googleapis.com/plus/v1/people/me"


@dataclass
class Settings:
    mongo_service_name: str = ""
    mongo_uri_name: str = "uri"
    mongo_collection_name: str = "org_records"
    redis_service_name: str = ""
    cc_api_url: str = "https://api.run.pivotal.io"
    allowed_domain: str = "pivotal.io"
    user_info_url: str = DEFAULT_USER_INFO_URL
    reservation_ttl_seconds: int = 300
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        try:
            ttl = int(env.get("RESERVATION_TTL_SECONDS", "300"))
        except ValueError:
            raise ConfigurationError("RESERVATION_TTL_SECONDS must be an integer")
        return cls(
            mongo_service_name=env.get("MONGO_SERVICE_NAME", ""),
            mongo_uri_name=env.get("MONGO_URI_NAME", "uri"),
            mongo_collection_name=env.get("MONGO_COLLECTION_NAME", "org_records"),
            redis_service_name=env.get("REDIS_SERVICE_NAME", ""),
            cc_api_url=env.get("CC_API_URL", "https://api.run.pivotal.io"),
            allowed_domain=env.get("ALLOWED_DOMAIN", "pivotal.io"),
            user_info_url=env.get("USER_INFO_URL", DEFAULT_USER_INFO_URL),
            reservation_ttl_seconds=ttl,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )


@dataclass
class ServiceBindings:
    """Services bound to the app, as published in VCAP_SERVICES.

    VCAP_SERVICES maps a service label to a list of instances, each carrying
    a "name" and a "credentials" dict.
    """

    instances: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: str) -> ServiceBindings:
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"VCAP_SERVICES is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("VCAP_SERVICES must be a JSON object")
        instances = [inst for group in data.values() for inst in group if isinstance(inst, dict)]
        return cls(instances=instances)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ServiceBindings:
        env = os.environ if environ is None else environ
        return cls.from_json(env.get("VCAP_SERVICES", "{}"))

    def with_name(self, name: str) -> dict[str, Any]:
        """Credentials of the instance called `name`."""
        for inst in self.instances:
            if inst.get("name") == name:
                return inst.get("credentials", {})
        raise ConfigurationError(f"no bound service named {name!r}")
