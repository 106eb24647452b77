"""
Tests for the in-memory verification store and the status state machine.
"""
import asyncio

import pytest
from pydantic import ValidationError

from idverify.models import VerificationStatus, can_transition
from idverify.storage import InMemoryVerificationStore


class TestStatusTransitions:

    @pytest.mark.parametrize("current,new", [
        (VerificationStatus.PENDING, VerificationStatus.DOCUMENT_PROCESSED),
        (VerificationStatus.DOCUMENT_PROCESSED, VerificationStatus.SELFIE_UPLOADED),
        (VerificationStatus.SELFIE_UPLOADED, VerificationStatus.PROCESSING),
        (VerificationStatus.PROCESSING, VerificationStatus.COMPLETED),
        (VerificationStatus.PROCESSING, VerificationStatus.FAILED),
    ])
    def test_forward_transitions_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        (VerificationStatus.COMPLETED, VerificationStatus.PROCESSING),
        (VerificationStatus.SELFIE_UPLOADED, VerificationStatus.DOCUMENT_PROCESSED),
        (VerificationStatus.DOCUMENT_PROCESSED, VerificationStatus.COMPLETED),
        (VerificationStatus.FAILED, VerificationStatus.PROCESSING),
    ])
    def test_regressions_and_skips_rejected(self, current, new):
        assert not can_transition(current, new)


class TestInMemoryVerificationStore:

    def test_ids_are_sequential(self):
        async def scenario():
            store = InMemoryVerificationStore()
            first = await store.create(document_path="a.jpg")
            second = await store.create(document_path="b.jpg")
            return first, second

        first, second = asyncio.run(scenario())
        assert (first.id, second.id) == (1, 2)
        assert first.status == VerificationStatus.PENDING
        assert first.created_at is not None
        assert first.completed_at is None

    def test_concurrent_creates_get_unique_ids(self):
        async def scenario():
            store = InMemoryVerificationStore()
            return await asyncio.gather(*[store.create(document_path=f"{i}.jpg") for i in range(20)])

        records = asyncio.run(scenario())
        assert sorted(r.id for r in records) == list(range(1, 21))

    def test_create_ignores_caller_id(self):
        record = asyncio.run(InMemoryVerificationStore().create(id=99, document_path="a.jpg"))
        assert record.id == 1

    def test_get_missing_returns_none(self):
        assert asyncio.run(InMemoryVerificationStore().get(404)) is None

    def test_update_returns_new_record(self):
        async def scenario():
            store = InMemoryVerificationStore()
            original = await store.create(document_path="a.jpg")
            updated = await store.update(original.id, {"selfie_path": "s.jpg", "id": 50})
            return original, updated, await store.get(original.id)

        original, updated, stored = asyncio.run(scenario())
        assert original.selfie_path == ""
        assert updated.selfie_path == "s.jpg"
        assert updated.id == original.id
        assert updated.created_at == original.created_at
        assert stored == updated

    def test_update_missing_returns_none(self):
        assert asyncio.run(InMemoryVerificationStore().update(7, {"status": "completed"})) is None

    def test_update_rejects_invalid_values(self):
        async def scenario():
            store = InMemoryVerificationStore()
            record = await store.create(document_path="a.jpg")
            with pytest.raises(ValidationError):
                await store.update(record.id, {"status": "bogus"})
            return await store.get(record.id)

        assert asyncio.run(scenario()).status == VerificationStatus.PENDING

    def test_records_are_immutable(self):
        record = asyncio.run(InMemoryVerificationStore().create(document_path="a.jpg"))
        with pytest.raises(ValidationError):
            record.status = VerificationStatus.COMPLETED

    def test_list_in_id_order(self):
        async def scenario():
            store = InMemoryVerificationStore()
            for name in ("a", "b", "c"):
                await store.create(document_path=f"{name}.jpg")
            return await store.list()

        assert [r.document_path for r in asyncio.run(scenario())] == ["a.jpg", "b.jpg", "c.jpg"]
