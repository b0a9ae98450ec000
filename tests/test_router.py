"""Tests for StorageRouter: provider selection, fallback, health caching."""

import asyncio

import pytest

from message_signer.config import ProviderConfig, StorageConfig
from message_signer.errors import BackendRejected, ConfigError, TransportError
from message_signer.models import MessageRecord
from message_signer.router import StorageInfo, StorageRouter, create_router_from_config
from message_signer.storage import HttpMessageStore, LocalMessageStore

OWNER = "0xAbC0000000000000000000000000000000000001"


class FakeStore:
    """In-memory store with scripted failures and call counters."""

    def __init__(self, name: str, healthy: bool = True, fail_with: Exception | None = None):
        self.name = name
        self.healthy = healthy
        self.fail_with = fail_with
        self.records: dict[str, MessageRecord] = {}
        self.calls: list[str] = []
        self.health_calls = 0

    async def health_check(self) -> bool:
        self.health_calls += 1
        return self.healthy

    def _maybe_fail(self, op: str) -> None:
        self.calls.append(op)
        if self.fail_with is not None:
            raise self.fail_with

    async def list(self, owner_address: str) -> list[MessageRecord]:
        self._maybe_fail("list")
        owner = owner_address.lower()
        return sorted((r for r in self.records.values() if r.owner_key == owner), key=lambda r: -r.created_at)

    async def put(self, record: MessageRecord) -> None:
        self._maybe_fail("put")
        self.records[record.record_id] = record

    async def delete_all(self, owner_address: str) -> None:
        self._maybe_fail("delete_all")
        self.records = {k: r for k, r in self.records.items() if r.owner_key != owner_address.lower()}


def _record(ts: int = 1) -> MessageRecord:
    return MessageRecord.create("hello", OWNER, created_at=ts)


def test_router_requires_unique_providers() -> None:
    with pytest.raises(ConfigError):
        StorageRouter([])
    with pytest.raises(ConfigError):
        StorageRouter([FakeStore("a"), FakeStore("a")])


def test_active_provider_serves_when_healthy() -> None:
    primary, secondary = FakeStore("vercel"), FakeStore("aws")
    router = StorageRouter([primary, secondary])
    record = _record()
    asyncio.run(router.put(record))
    assert record.record_id in primary.records
    assert secondary.calls == []
    assert secondary.health_calls == 0
    assert router.active is primary


def test_transport_error_falls_back_for_that_call() -> None:
    primary = FakeStore("vercel", fail_with=TransportError("timeout", provider="vercel"))
    secondary = FakeStore("aws")
    router = StorageRouter([primary, secondary])
    record = _record()
    asyncio.run(router.put(record))
    assert primary.calls == ["put"]
    assert secondary.records == {record.record_id: record}


def test_fallback_is_not_sticky() -> None:
    primary = FakeStore("vercel", fail_with=TransportError("timeout", provider="vercel"))
    secondary = FakeStore("aws")
    router = StorageRouter([primary, secondary])

    async def scenario():
        await router.put(_record(1))
        primary.fail_with = None
        await router.put(_record(2))

    asyncio.run(scenario())
    assert primary.calls == ["put", "put"]
    assert len(primary.records) == 1
    assert len(secondary.records) == 1


def test_backend_rejected_is_not_retried() -> None:
    primary = FakeStore("vercel", fail_with=BackendRejected("quota exceeded", provider="vercel", status_code=429))
    secondary = FakeStore("aws")
    router = StorageRouter([primary, secondary])
    with pytest.raises(BackendRejected) as exc:
        asyncio.run(router.put(_record()))
    assert exc.value.status_code == 429
    assert secondary.calls == []


def test_every_provider_down_raises_last_transport_error() -> None:
    primary = FakeStore("vercel", fail_with=TransportError("a down", provider="vercel"))
    secondary = FakeStore("aws", fail_with=TransportError("b down", provider="aws"))
    router = StorageRouter([primary, secondary])
    with pytest.raises(TransportError) as exc:
        asyncio.run(router.list(OWNER))
    assert exc.value.provider == "aws"
    assert primary.calls == ["list"]
    assert secondary.calls == ["list"]


def test_unhealthy_provider_is_skipped_without_call() -> None:
    primary = FakeStore("vercel", healthy=False)
    secondary = FakeStore("aws")
    router = StorageRouter([primary, secondary])
    asyncio.run(router.list(OWNER))
    assert primary.health_calls == 1
    assert primary.calls == []
    assert secondary.calls == ["list"]


def test_health_probed_lazily_and_cached() -> None:
    primary = FakeStore("vercel")
    router = StorageRouter([primary, FakeStore("aws")])
    assert primary.health_calls == 0

    async def scenario():
        await router.list(OWNER)
        await router.list(OWNER)

    asyncio.run(scenario())
    assert primary.health_calls == 1
    assert router.describe().health["vercel"] is True


def test_unhealthy_provider_reprobed_next_call() -> None:
    primary = FakeStore("vercel", healthy=False)
    router = StorageRouter([primary, FakeStore("aws")])

    async def scenario():
        await router.list(OWNER)
        primary.healthy = True
        await router.list(OWNER)

    asyncio.run(scenario())
    assert primary.health_calls == 2
    assert primary.calls == ["list"]


def test_transport_error_clears_cached_health() -> None:
    primary = FakeStore("vercel", fail_with=TransportError("reset", provider="vercel"))
    router = StorageRouter([primary, FakeStore("aws")])

    async def scenario():
        await router.list(OWNER)
        await router.list(OWNER)

    asyncio.run(scenario())
    assert primary.health_calls == 2
    assert router.describe().health["vercel"] is None


def test_check_health_and_describe() -> None:
    router = StorageRouter([FakeStore("vercel", healthy=False), FakeStore("aws"), FakeStore("local")])
    assert router.describe() == StorageInfo(
        active="vercel", chain=("vercel", "aws", "local"), health={"vercel": None, "aws": None, "local": None}
    )
    report = asyncio.run(router.check_health())
    assert report == {"vercel": False, "aws": True, "local": True}
    assert router.describe().health == report
    assert asyncio.run(router.health_check()) is True


def test_router_health_false_when_all_down() -> None:
    router = StorageRouter([FakeStore("vercel", healthy=False), FakeStore("aws", healthy=False)])
    assert asyncio.run(router.health_check()) is False


def test_delete_all_falls_back() -> None:
    primary = FakeStore("vercel", fail_with=TransportError("down", provider="vercel"))
    secondary = FakeStore("aws")
    router = StorageRouter([primary, secondary])
    record = _record()

    async def scenario():
        await secondary.put(record)
        await router.delete_all(OWNER)
        return await router.list(OWNER)

    assert asyncio.run(scenario()) == []
    assert secondary.records == {}


def test_create_router_from_config_skips_unconfigured() -> None:
    config = StorageConfig(
        providers=[
            ProviderConfig(name="vercel", kind="http", endpoint="https://kv.example.com/api"),
            ProviderConfig(name="aws", kind="dynamodb"),
        ]
    )
    router = create_router_from_config(config)
    assert router.describe().chain == ("vercel", "local")
    assert isinstance(router.providers[0], HttpMessageStore)
    assert isinstance(router.providers[1], LocalMessageStore)


def test_create_router_from_config_without_any_provider() -> None:
    config = StorageConfig(providers=[ProviderConfig(name="aws", kind="dynamodb")], fallback_to_local=False)
    with pytest.raises(ConfigError):
        create_router_from_config(config)


def test_router_aclose_closes_http_clients() -> None:
    http = HttpMessageStore("https://kv.example.com/api", name="vercel")
    router = StorageRouter([http, LocalMessageStore()])

    async def scenario():
        http._get_client()
        await router.aclose()

    asyncio.run(scenario())
    assert http._client is None
