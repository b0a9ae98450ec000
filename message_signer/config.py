"""
Storage configuration: ordered provider preference list, resolved once at startup.

Sources: a dict (e.g. the `storage:` section of app.yaml), a YAML file, or the
deployment environment (KV_REST_API_URL / KV_REST_API_TOKEN, DYNAMODB_TABLE /
AWS_REGION, LOCAL_STORE_PATH, MESSAGE_HISTORY_LIMIT).

Example YAML:

    storage:
      history_limit: 50
      providers:
        - name: vercel
          kind: http
          endpoint: https://my-app.vercel.app/api
          api_token: ...
        - name: aws
          kind: dynamodb
          table: web3-message-signer-messages
          region: us-east-1
        - name: local
          kind: local
          path: ~/.message_signer/messages.json
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from message_signer.errors import ConfigError
from message_signer.models import HISTORY_LIMIT

PROVIDER_KINDS = ("http", "dynamodb", "local")
_STRING_FIELDS = frozenset({"endpoint", "api_token", "table", "region", "access_key", "secret_key", "path"})


@dataclass
class ProviderConfig:
    name: str
    kind: str
    endpoint: str = ""
    api_token: str = ""
    table: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    path: str = ""
    timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        """Presence check only (non-empty endpoint / table); no network probe."""
        if self.kind == "http":
            return bool(self.endpoint.strip())
        if self.kind == "dynamodb":
            return bool(self.table.strip())
        return self.kind == "local"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderConfig:
        kind = str(data.get("kind") or "").strip().lower()
        if kind not in PROVIDER_KINDS:
            raise ConfigError(f"unknown provider kind {kind!r}; expected one of {PROVIDER_KINDS}")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        # YAML may give numbers or booleans for string fields
        for key in values.keys() & _STRING_FIELDS:
            values[key] = str(values[key])
        values["kind"] = kind
        values["name"] = str(data.get("name") or kind)
        if "path" in values:
            values["path"] = os.path.expanduser(str(values["path"]))
        try:
            values["timeout"] = float(values.get("timeout", 10.0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"provider {values['name']!r}: invalid timeout") from e
        return cls(**values)


@dataclass
class StorageConfig:
    providers: list[ProviderConfig] = field(default_factory=list)
    history_limit: int = HISTORY_LIMIT
    fallback_to_local: bool = True
    retention_days: int = 30

    def __post_init__(self) -> None:
        if self.history_limit < 1:
            raise ConfigError("history_limit must be at least 1")
        names = [p.name for p in self.providers]
        if len(names) != len(set(names)):
            raise ConfigError(f"duplicate provider names: {names}")

    def configured_providers(self) -> list[ProviderConfig]:
        """
        Providers whose presence is configured, in preference order.

        A local provider is appended when fallback_to_local is set and none is listed.
        """
        chain = [p for p in self.providers if p.is_configured]
        if self.fallback_to_local and not any(p.kind == "local" for p in chain):
            chain.append(ProviderConfig(name="local", kind="local"))
        return chain

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StorageConfig:
        if "storage" in data and isinstance(data["storage"], Mapping):
            data = data["storage"]
        raw_providers = data.get("providers") or []
        if not isinstance(raw_providers, list):
            raise ConfigError("providers must be a list")
        try:
            return cls(
                providers=[ProviderConfig.from_dict(p) for p in raw_providers],
                history_limit=int(data.get("history_limit", HISTORY_LIMIT)),
                fallback_to_local=bool(data.get("fallback_to_local", True)),
                retention_days=int(data.get("retention_days", 30)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid storage config: {e}") from e

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StorageConfig:
        """Build the default vercel -> aws -> local chain from deployment variables."""
        env = os.environ if environ is None else environ
        providers = [
            ProviderConfig(
                name="vercel",
                kind="http",
                endpoint=env.get("KV_REST_API_URL", ""),
                api_token=env.get("KV_REST_API_TOKEN", ""),
            ),
            ProviderConfig(
                name="aws",
                kind="dynamodb",
                table=env.get("DYNAMODB_TABLE", ""),
                region=env.get("AWS_REGION", ""),
                endpoint=env.get("DYNAMODB_ENDPOINT", ""),
            ),
            ProviderConfig(name="local", kind="local", path=env.get("LOCAL_STORE_PATH", "")),
        ]
        try:
            limit = int(env.get("MESSAGE_HISTORY_LIMIT", HISTORY_LIMIT))
        except ValueError as e:
            raise ConfigError("MESSAGE_HISTORY_LIMIT must be an integer") from e
        return cls(providers=providers, history_limit=limit)


def load_config(path: str | Path) -> StorageConfig:
    """Read a YAML file (top-level `storage:` key or bare mapping) into StorageConfig."""
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return StorageConfig.from_dict(data)
