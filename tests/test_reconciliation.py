"""Tests for reconciliation against the gateway.

Tests verify:
1. Gateway-reported outcomes are applied to open items
2. Terminal items are never downgraded
3. One failing lookup does not stop the sweep
"""

from __future__ import annotations

import pytest

from disbursement_engine.errors import GatewayError, NotFoundError
from disbursement_engine.services.references import build_item_reference
from disbursement_engine.services.state_machine import BatchStatus, ItemStatus


@pytest.fixture
async def submitted(batch, orchestrator):
    await orchestrator.execute(batch.id)
    return batch


def ref(batch, index: int) -> str:
    return build_item_reference(batch.id, batch.items[index].id)


class TestReconcile:
    """Reconciler.reconcile behaviour."""

    async def test_applies_gateway_outcomes(self, submitted, gateway, reconciler, store):
        gateway.settle(ref(submitted, 0))
        gateway.settle(ref(submitted, 1))
        gateway.fail(ref(submitted, 2), "Invalid account")

        summary = await reconciler.reconcile(submitted.id)

        assert summary.as_dict() == {"updated": 3, "errors": 0, "total": 3}
        assert summary.success is True
        batch = await store.require_batch(submitted.id)
        assert batch.status == BatchStatus.PARTIALLY_COMPLETED
        assert batch.completed_count == 2
        assert batch.failed_count == 1
        failed = await store.get_item(submitted.items[2].id)
        assert failed.error_message == "Invalid account"

    async def test_pending_gateway_status_leaves_item_open(self, submitted, reconciler, store):
        summary = await reconciler.reconcile(submitted.id)

        assert summary.updated == 0
        assert summary.examined == 3
        items = await store.list_items(submitted.id)
        assert all(i.status == ItemStatus.PROCESSING for i in items)

    async def test_failure_without_description_gets_default_message(
        self, submitted, gateway, reconciler, store
    ):
        gateway.set_status(ref(submitted, 0), "REVERSED")

        await reconciler.reconcile(submitted.id)

        item = await store.get_item(submitted.items[0].id)
        assert item.status == ItemStatus.FAILED
        assert item.error_message == "Transaction failed"

    async def test_never_downgrades_terminal_item(self, submitted, gateway, reconciler, store, notify):
        await notify(ref(submitted, 0))
        gateway.fail(ref(submitted, 0), "Reversed by bank")

        summary = await reconciler.reconcile(submitted.id)

        assert summary.updated == 0
        assert (await store.get_item(submitted.items[0].id)).status == ItemStatus.COMPLETED

    async def test_second_run_is_a_no_op(self, submitted, gateway, reconciler):
        for index in range(3):
            gateway.settle(ref(submitted, index))

        first = await reconciler.reconcile(submitted.id)
        second = await reconciler.reconcile(submitted.id)

        assert first.updated == 3
        assert second.updated == 0
        assert second.errors == 0

    async def test_lookup_failure_is_isolated(self, submitted, gateway, reconciler, store, monkeypatch):
        broken = gateway.gateway_reference_for(ref(submitted, 1))
        lookup = gateway.get_transaction_status

        async def flaky(reference):
            if reference == broken:
                raise GatewayError("Gateway timeout", status_code=504)
            return await lookup(reference)

        monkeypatch.setattr(gateway, "get_transaction_status", flaky)
        gateway.settle(ref(submitted, 0))
        gateway.settle(ref(submitted, 2))

        summary = await reconciler.reconcile(submitted.id)

        assert summary.as_dict() == {"updated": 2, "errors": 1, "total": 3}
        assert summary.success is False
        assert summary.error_details[0]["item_id"] == submitted.items[1].id
        assert (await store.get_item(submitted.items[1].id)).status == ItemStatus.PROCESSING
        batch = await store.require_batch(submitted.id)
        assert batch.completed_count == 2

    async def test_batch_without_references(self, batch, reconciler, gateway):
        summary = await reconciler.reconcile(batch.id)

        assert summary.as_dict() == {"updated": 0, "errors": 0, "total": 0}

    async def test_only_referenced_items_are_examined(self, batch, orchestrator, gateway, reconciler):
        gateway.drop_reference(ref(batch, 0))
        await orchestrator.execute(batch.id)

        summary = await reconciler.reconcile(batch.id)

        assert summary.examined == 2

    async def test_unknown_batch(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.reconcile(424242)
