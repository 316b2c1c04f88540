from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import anyio
import httpx

from ..core.record import UsageRecord, UsageRecordError, record_from_mapping, record_to_mapping
from ._retry import RetryConfig, request_with_retry
from .base import StoredRecord, StoreError, VersionConflictError


class HttpDocumentStore:
    """Usage records kept in a JSON document API, one document per user id.

    ``GET`` answers ``{"data": {...}, "version": n}`` or 404 for a user that
    has never been evaluated. ``PUT`` carries ``If-Match: <version>`` and
    answers 412 when another writer got there first.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        collection: str = "usage",
        retry_config: RetryConfig | None = None,
        logger: logging.Logger | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.base_url = (base_url or os.getenv("USAGE_STORE_URL", "")).rstrip("/")
        self.token = token or os.getenv("USAGE_STORE_TOKEN", "")
        self.collection = collection
        self.retry_config = retry_config or RetryConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def _url(self, user_id: str) -> str:
        if not self.base_url:
            raise StoreError("document store base url is not configured")
        return f"{self.base_url}/{self.collection}/{quote(user_id, safe='')}"

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            timeout=self._timeout, headers=headers, transport=self._transport
        )

    async def load(self, user_id: str) -> StoredRecord:
        url = self._url(user_id)
        async with self._client() as client:

            async def _attempt() -> httpx.Response:
                return await client.get(url)

            response = await request_with_retry(
                adapter="http_store",
                correlation_id=str(uuid.uuid4()),
                target=user_id,
                attempt=_attempt,
                retry_config=self.retry_config,
                logger=self._logger,
                expected_statuses=(404,),
                sleep=self._sleep,
            )
        if response.status_code == 404:
            return StoredRecord(UsageRecord.empty(), 0)
        body = _json_body(response)
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise UsageRecordError(f"usage document for {user_id} carries no data object")
        return StoredRecord(record_from_mapping(body["data"]), _version(body, user_id))

    async def save(self, user_id: str, record: UsageRecord, *, expected_version: int) -> int:
        url = self._url(user_id)
        payload = {"data": record_to_mapping(record)}
        headers = {"If-Match": str(expected_version)}
        async with self._client() as client:

            async def _attempt() -> httpx.Response:
                return await client.put(url, json=payload, headers=headers)

            response = await request_with_retry(
                adapter="http_store",
                correlation_id=str(uuid.uuid4()),
                target=user_id,
                attempt=_attempt,
                retry_config=self.retry_config,
                logger=self._logger,
                expected_statuses=(409, 412),
                sleep=self._sleep,
            )
        if response.status_code in (409, 412):
            raise VersionConflictError(user_id, expected_version)
        body = _json_body(response)
        if not isinstance(body, dict):
            raise StoreError(f"unexpected save response for {user_id}")
        return _version(body, user_id)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UsageRecordError(f"document store returned invalid JSON: {exc}") from exc


def _version(body: dict[str, Any], user_id: str) -> int:
    version = body.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise StoreError(f"document store returned no usable version for {user_id}")
    return version


__all__ = ["HttpDocumentStore"]
