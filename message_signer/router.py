"""
Storage router: one MessageStore facade over an ordered provider chain.

Policy:
- Providers are tried in preference order. The first configured provider is the
  active one; its health is probed lazily, right before its first use.
- A TransportError (or a failed health probe) advances to the next provider, once
  per provider per call. The failed provider is not retried within the same call.
- BackendRejected and other MessageSignerErrors stop the chain and are raised as-is.
- Fallback is not sticky: every call starts again from the top of the chain.
- When every provider fails with TransportError, the last one is raised.

Each attempt is reduced to a tagged outcome (Ok | Retryable | Fatal) so the chain
walk itself has no exception-based control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, Union

from message_signer.config import StorageConfig
from message_signer.errors import ConfigError, MessageSignerError, TransportError
from message_signer.models import MessageRecord
from message_signer.storage import MessageStore, create_message_store_from_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok:
    value: Any = None


@dataclass(frozen=True)
class Retryable:
    error: TransportError


@dataclass(frozen=True)
class Fatal:
    error: MessageSignerError


Outcome = Union[Ok, Retryable, Fatal]


@dataclass(frozen=True)
class StorageInfo:
    """Snapshot of router state: active provider, chain order, last known health."""

    active: str
    chain: tuple[str, ...]
    health: dict[str, bool | None] = field(default_factory=dict)


class StorageRouter:
    """Selects a provider per call and falls back on TransportError."""

    name = "router"

    def __init__(self, providers: Sequence[MessageStore]):
        if not providers:
            raise ConfigError("storage router needs at least one provider")
        names = [p.name for p in providers]
        if len(names) != len(set(names)):
            raise ConfigError(f"duplicate provider names: {names}")
        self._providers = list(providers)
        # name -> last probe result; absent means unknown (probe before next use)
        self._health: dict[str, bool] = {}

    @property
    def providers(self) -> tuple[MessageStore, ...]:
        return tuple(self._providers)

    @property
    def active(self) -> MessageStore:
        return self._providers[0]

    async def _attempt(self, provider: MessageStore, call: Callable[[MessageStore], Awaitable[Any]]) -> Outcome:
        if not self._health.get(provider.name):
            healthy = await provider.health_check()
            self._health[provider.name] = healthy
            logger.debug("health probe %s: %s", provider.name, "up" if healthy else "down")
            if not healthy:
                return Retryable(TransportError(f"{provider.name}: health check failed", provider=provider.name))
        try:
            value = await call(provider)
        except TransportError as e:
            self._health.pop(provider.name, None)
            return Retryable(e)
        except MessageSignerError as e:
            return Fatal(e)
        return Ok(value)

    async def _dispatch(self, operation: str, call: Callable[[MessageStore], Awaitable[Any]]) -> Any:
        errors: list[TransportError] = []
        for index, provider in enumerate(self._providers):
            outcome = await self._attempt(provider, call)
            if isinstance(outcome, Ok):
                if index:
                    logger.info("%s served by fallback provider %s", operation, provider.name)
                return outcome.value
            if isinstance(outcome, Fatal):
                logger.warning("%s rejected by %s: %s", operation, provider.name, outcome.error)
                raise outcome.error
            errors.append(outcome.error)
            logger.warning("%s failed on %s, trying next provider: %s", operation, provider.name, outcome.error)
        logger.error("%s failed on every provider", operation)
        raise errors[-1]

    async def list(self, owner_address: str) -> list[MessageRecord]:
        return await self._dispatch("list", lambda p: p.list(owner_address))

    async def put(self, record: MessageRecord) -> None:
        await self._dispatch("put", lambda p: p.put(record))

    async def delete_all(self, owner_address: str) -> None:
        await self._dispatch("delete_all", lambda p: p.delete_all(owner_address))

    async def health_check(self) -> bool:
        """True if any provider in the chain is live."""
        for provider in self._providers:
            if await provider.health_check():
                return True
        return False

    async def check_health(self) -> dict[str, bool]:
        """Probe every provider, refresh the cached health, and report name -> live."""
        report: dict[str, bool] = {}
        for provider in self._providers:
            report[provider.name] = await provider.health_check()
        self._health.update(report)
        return report

    def describe(self) -> StorageInfo:
        return StorageInfo(
            active=self.active.name,
            chain=tuple(p.name for p in self._providers),
            health={p.name: self._health.get(p.name) for p in self._providers},
        )

    async def aclose(self) -> None:
        for provider in self._providers:
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()


def create_router_from_config(config: StorageConfig) -> StorageRouter:
    """
    Build a StorageRouter from StorageConfig.

    Providers without configured presence (empty endpoint / table) are left out;
    ties go to preference order. A local fallback ends the chain unless
    fallback_to_local is False.
    """
    chain = config.configured_providers()
    if not chain:
        raise ConfigError("no storage provider is configured")
    stores = [create_message_store_from_config(p, config.history_limit, config.retention_days) for p in chain]
    logger.info("storage chain: %s", " -> ".join(s.name for s in stores))
    return StorageRouter(stores)
