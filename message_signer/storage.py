"""
Message persistence backends: abstract interface and implementations.

- MessageStore: protocol for list/put/delete_all/health_check, scoped by owner address.
- HttpMessageStore: managed key-value store behind a JSON HTTP API (Vercel KV style).
- DynamoDBMessageStore: AWS DynamoDB table (boto3); honors the expiry hint as a TTL attribute.
- LocalMessageStore: process-local fallback, optionally persisted to a JSON file; never
  raises TransportError.

Every operation may raise TransportError (unreachable, triggers fallback) or
BackendRejected (reachable but refused). health_check() never raises.

Owner lookups are case-insensitive: owners are keyed by the lowercased address.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx

from message_signer.errors import BackendRejected, ConfigError, TransportError
from message_signer.history import RecordHistory
from message_signer.models import HISTORY_LIMIT, MessageRecord, normalize_address
from message_signer.serialization import (
    parse_layout,
    parse_records,
    record_from_dict,
    record_to_dict,
    serialize_layout,
)

if TYPE_CHECKING:
    from message_signer.config import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def _newest_first(records: list[MessageRecord], limit: int) -> list[MessageRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]


class MessageStore(Protocol):
    """Protocol for one persistence backend."""

    name: str

    async def list(self, owner_address: str) -> list[MessageRecord]:
        """Records of owner, newest first by created_at; empty if owner unknown."""
        ...

    async def put(self, record: MessageRecord) -> None:
        """Idempotent upsert keyed by (owner, record_id)."""
        ...

    async def delete_all(self, owner_address: str) -> None:
        """Remove every record of owner; no-op if none."""
        ...

    async def health_check(self) -> bool:
        """Lightweight liveness probe; returns False instead of raising."""
        ...


class LocalMessageStore:
    """
    Process-local fallback store.

    Keeps one RecordHistory per lowercased owner, capped at `limit`. With `path`,
    the layout {owner: [records newest first]} is written as JSON after each change
    and loaded at construction.
    """

    def __init__(self, path: str | Path | None = None, limit: int = HISTORY_LIMIT, name: str = "local") -> None:
        self.name = name
        self.limit = limit
        self.path = Path(path) if path else None
        self._histories: dict[str, RecordHistory] = {}
        if self.path is not None and self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            layout = parse_layout(self.path.read_bytes())
        except (OSError, ValueError, KeyError) as e:
            logger.warning("local store %s unreadable, starting empty: %s", self.path, e)
            return
        for owner, records in layout.items():
            history = self._histories.setdefault(normalize_address(owner), RecordHistory(self.limit))
            # oldest first so insertion order matches the stored order
            for record in reversed(records):
                history.upsert(record)

    def _flush(self, histories: dict[str, RecordHistory]) -> None:
        if self.path is None:
            return
        layout = {owner: history.records() for owner, history in histories.items() if len(history)}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(serialize_layout(layout))
            os.replace(tmp, self.path)
        except OSError as e:
            raise BackendRejected(f"local store write failed: {e}", provider=self.name) from e

    async def list(self, owner_address: str) -> list[MessageRecord]:
        history = self._histories.get(normalize_address(owner_address))
        return history.records() if history is not None else []

    async def put(self, record: MessageRecord) -> None:
        # mutate a copy; swap it in only once the file write succeeds
        current = self._histories.get(record.owner_key)
        history = current.copy() if current is not None else RecordHistory(self.limit)
        evicted = history.upsert(record)
        histories = {**self._histories, record.owner_key: history}
        self._flush(histories)
        self._histories = histories
        if evicted:
            logger.debug("local store evicted %d record(s) for %s", len(evicted), record.owner_key)

    async def delete_all(self, owner_address: str) -> None:
        owner = normalize_address(owner_address)
        if owner not in self._histories:
            return
        histories = {k: v for k, v in self._histories.items() if k != owner}
        self._flush(histories)
        self._histories = histories

    async def health_check(self) -> bool:
        return True


class HttpMessageStore:
    """
    Managed store behind a JSON HTTP API.

    GET {endpoint}/messages?ownerAddress=..   -> [record, ...] or {"data": [...]}
    POST {endpoint}/messages                  <- record (upsert)
    DELETE {endpoint}/messages?ownerAddress=..
    GET {endpoint}/health                     -> 2xx when live

    Transport failures and 5xx map to TransportError; 4xx to BackendRejected.
    """

    def __init__(
        self,
        endpoint: str,
        api_token: str | None = None,
        name: str = "http",
        timeout: float = 10.0,
        limit: int = HISTORY_LIMIT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            endpoint: Base URL of the store API (e.g. https://app.example.com/api).
            api_token: Optional bearer token.
            name: Provider name used in logs and errors.
            timeout: Per-request timeout in seconds.
            limit: Maximum records returned per owner.
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        """
        self.name = name
        self.endpoint = endpoint.rstrip("/")
        self.limit = limit
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.endpoint,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"{self.name}: {method} {path} failed: {e}", provider=self.name) from e
        if resp.status_code >= 500:
            raise TransportError(f"{self.name}: {method} {path} returned {resp.status_code}", provider=self.name)
        if resp.status_code >= 400:
            raise BackendRejected(
                f"{self.name}: {method} {path} rejected: {resp.text[:200]}",
                provider=self.name,
                status_code=resp.status_code,
            )
        return resp

    async def list(self, owner_address: str) -> list[MessageRecord]:
        owner = normalize_address(owner_address)
        resp = await self._request("GET", "/messages", params={"ownerAddress": owner})
        try:
            records = parse_records(resp.content) if resp.content else []
        except (ValueError, KeyError) as e:
            raise BackendRejected(f"{self.name}: malformed list response: {e}", provider=self.name) from e
        return _newest_first([r for r in records if r.owner_key == owner], self.limit)

    async def put(self, record: MessageRecord) -> None:
        await self._request("POST", "/messages", json=record_to_dict(record))

    async def delete_all(self, owner_address: str) -> None:
        await self._request("DELETE", "/messages", params={"ownerAddress": normalize_address(owner_address)})

    async def health_check(self) -> bool:
        try:
            resp = await self._get_client().get("/health")
        except httpx.HTTPError as e:
            logger.debug("%s health probe failed: %s", self.name, e)
            return False
        return resp.status_code < 400


# DynamoDB error codes meaning "service unavailable" rather than "request refused".
_UNAVAILABLE_CODES = frozenset({"ServiceUnavailable", "InternalServerError", "RequestTimeout"})


class DynamoDBMessageStore:
    """
    AWS DynamoDB backend.

    Table key schema: partition key `ownerKey` (lowercased owner), sort key `recordId`.
    Each item also carries the record wire fields and a `ttl` attribute (epoch seconds)
    from the record expiry, or created_at + retention_days when no expiry is set.
    Requires: pip install boto3.
    """

    PARTITION_KEY = "ownerKey"
    SORT_KEY = "recordId"

    def __init__(
        self,
        table_name: str,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        name: str = "dynamodb",
        retention_days: int = DEFAULT_RETENTION_DAYS,
        limit: int = HISTORY_LIMIT,
    ):
        """
        Args:
            table_name: DynamoDB table name.
            region_name: AWS region (optional if set in env/profile).
            endpoint_url: Optional endpoint (e.g. http://localhost:8000 for DynamoDB Local).
            access_key: Access key (optional if using env/instance profile).
            secret_key: Secret key (optional if using env/instance profile).
            name: Provider name used in logs and errors.
            retention_days: Default TTL horizon for records without expiry.
            limit: Per-owner history cap, enforced after each put.
        """
        self.name = name
        self.table_name = table_name
        self.retention_days = retention_days
        self.limit = limit
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        self._access_key = access_key
        self._secret_key = secret_key
        self._table = None

    def _get_table(self):
        import boto3

        if self._table is None:
            kwargs: dict[str, Any] = {}
            if self._region_name:
                kwargs["region_name"] = self._region_name
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"] = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            self._table = boto3.resource("dynamodb", **kwargs).Table(self.table_name)
        return self._table

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return await asyncio.to_thread(fn, *args)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "")
            if code in _UNAVAILABLE_CODES:
                raise TransportError(f"{self.name}: {code}", provider=self.name) from e
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            raise BackendRejected(
                f"{self.name}: {code}: {error.get('Message', '')}", provider=self.name, status_code=status
            ) from e
        except BotoCoreError as e:
            raise TransportError(f"{self.name}: {e}", provider=self.name) from e

    def _to_item(self, record: MessageRecord) -> dict[str, Any]:
        item = record_to_dict(record)
        item[self.PARTITION_KEY] = record.owner_key
        if record.expiry is not None:
            item["ttl"] = record.expiry // 1000
        else:
            item["ttl"] = record.created_at // 1000 + self.retention_days * 24 * 60 * 60
        return item

    def _from_item(self, item: dict[str, Any]) -> MessageRecord:
        if not isinstance(item, dict):
            raise ValueError(f"expected an item mapping, got {type(item).__name__}")
        data = {k: v for k, v in item.items() if k not in (self.PARTITION_KEY, "ttl")}
        return record_from_dict(data)

    def _query(self, owner: str) -> list[dict[str, Any]]:
        table = self._get_table()
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": f"{self.PARTITION_KEY} = :owner",
            "ExpressionAttributeValues": {":owner": owner},
        }
        items: list[dict[str, Any]] = []
        while True:
            resp = table.query(**kwargs)
            items.extend(resp.get("Items") or [])
            last = resp.get("LastEvaluatedKey")
            if not last:
                return items
            kwargs["ExclusiveStartKey"] = last

    def _put_item(self, item: dict[str, Any]) -> None:
        self._get_table().put_item(Item=item)

    def _delete_items(self, owner: str, record_ids: list[str]) -> None:
        with self._get_table().batch_writer() as batch:
            for record_id in record_ids:
                batch.delete_item(Key={self.PARTITION_KEY: owner, self.SORT_KEY: record_id})

    def _describe(self) -> None:
        self._get_table().load()

    async def _all_records(self, owner: str) -> list[MessageRecord]:
        items = await self._run(self._query, owner)
        try:
            records = [self._from_item(item) for item in items]
        except (ValueError, KeyError) as e:
            raise BackendRejected(f"{self.name}: malformed item in table {self.table_name}: {e}", provider=self.name) from e
        return _newest_first(records, len(records))

    async def list(self, owner_address: str) -> list[MessageRecord]:
        records = await self._all_records(normalize_address(owner_address))
        return records[: self.limit]

    async def put(self, record: MessageRecord) -> None:
        await self._run(self._put_item, self._to_item(record))
        records = await self._all_records(record.owner_key)
        overflow = [r.record_id for r in records[self.limit:]]
        if overflow:
            logger.debug("%s evicting %d record(s) for %s", self.name, len(overflow), record.owner_key)
            await self._run(self._delete_items, record.owner_key, overflow)

    async def delete_all(self, owner_address: str) -> None:
        owner = normalize_address(owner_address)
        records = await self._all_records(owner)
        if records:
            await self._run(self._delete_items, owner, [r.record_id for r in records])

    async def health_check(self) -> bool:
        try:
            await self._run(self._describe)
        except (TransportError, BackendRejected) as e:
            logger.debug("%s health probe failed: %s", self.name, e)
            return False
        return True


def _normalize_endpoint(endpoint: str | None) -> str | None:
    """Ensure endpoint has scheme (https://) and no trailing slash. Returns None if empty."""
    if not endpoint or not endpoint.strip():
        return None
    ep = endpoint.strip().rstrip("/")
    if not ep.startswith("http://") and not ep.startswith("https://"):
        ep = "https://" + ep
    return ep


def create_message_store_from_config(
    provider: ProviderConfig,
    history_limit: int = HISTORY_LIMIT,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> MessageStore:
    """
    Build one backend from a provider config entry.

    kind "http" -> HttpMessageStore (endpoint normalized to https when no scheme),
    kind "dynamodb" -> DynamoDBMessageStore, kind "local" -> LocalMessageStore.
    The caller checks provider.is_configured first.
    """
    if provider.kind == "http":
        endpoint = _normalize_endpoint(provider.endpoint)
        if endpoint is None:
            raise ConfigError(f"provider {provider.name!r}: endpoint is required")
        return HttpMessageStore(
            endpoint=endpoint,
            api_token=provider.api_token or None,
            name=provider.name,
            timeout=provider.timeout,
            limit=history_limit,
        )
    if provider.kind == "dynamodb":
        if not provider.table:
            raise ConfigError(f"provider {provider.name!r}: table is required")
        return DynamoDBMessageStore(
            table_name=provider.table,
            region_name=provider.region or None,
            endpoint_url=_normalize_endpoint(provider.endpoint),
            access_key=provider.access_key or None,
            secret_key=provider.secret_key or None,
            name=provider.name,
            retention_days=retention_days,
            limit=history_limit,
        )
    if provider.kind == "local":
        return LocalMessageStore(path=provider.path or None, limit=history_limit, name=provider.name)
    raise ConfigError(f"provider {provider.name!r}: unknown kind {provider.kind!r}")
