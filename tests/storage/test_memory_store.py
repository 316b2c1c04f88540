from __future__ import annotations

import pytest

from usage_quota.core.record import UsageRecord, UsageRecordError
from usage_quota.storage import InMemoryUsageStore, StoredRecord, VersionConflictError


@pytest.mark.anyio
async def test_unknown_user_loads_empty_record_at_version_zero() -> None:
    store = InMemoryUsageStore()
    assert await store.load("nobody") == StoredRecord(UsageRecord.empty(), 0)


@pytest.mark.anyio
async def test_save_bumps_version_and_persists_document() -> None:
    store = InMemoryUsageStore()
    record = UsageRecord(events=(1.0, 2.0), cooldown_until=10.0)

    version = await store.save("u1", record, expected_version=0)

    assert version == 1
    assert await store.load("u1") == StoredRecord(record, 1)
    assert store.document("u1") == {"events": [1.0, 2.0], "cooldownUntil": 10.0}


@pytest.mark.anyio
async def test_stale_version_is_rejected() -> None:
    store = InMemoryUsageStore()
    await store.save("u1", UsageRecord.empty(), expected_version=0)

    with pytest.raises(VersionConflictError) as excinfo:
        await store.save("u1", UsageRecord(events=(1.0,)), expected_version=0)

    assert excinfo.value.expected == 0
    assert excinfo.value.actual == 1
    assert (await store.load("u1")).record == UsageRecord.empty()


@pytest.mark.anyio
async def test_malformed_seed_document_surfaces_error() -> None:
    store = InMemoryUsageStore({"u1": {"events": ["yesterday"]}})
    with pytest.raises(UsageRecordError):
        await store.load("u1")
