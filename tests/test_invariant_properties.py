"""Property-based tests for ledger invariants.

These tests use hypothesis to generate random status mixes and random
sequences of gateway events, and verify that the aggregate always agrees
with the items, terminal items never move, and counts never exceed the
item count, whatever the order of delivery.
"""

from __future__ import annotations

import random

import pytest
from hypothesis import given, strategies as st

from disbursement_engine.services.references import build_item_reference
from disbursement_engine.services.state_machine import (
    AggregateCounts,
    BatchStatus,
    ItemStateMachine,
    ItemStatus,
    derive_batch_status,
)

from helpers import notification_body, sign

item_statuses = st.sampled_from([s.value for s in ItemStatus])


class TestDerivedStatusProperties:
    """Aggregate derivation over arbitrary item mixes."""

    @given(st.lists(item_statuses, min_size=1, max_size=50))
    def test_counts_bounded_by_total(self, statuses):
        counts = AggregateCounts.from_statuses(statuses)
        assert counts.completed + counts.failed <= counts.total
        assert counts.completed + counts.failed + counts.pending + counts.processing == counts.total

    @given(st.lists(item_statuses, min_size=1, max_size=50))
    def test_completed_iff_every_item_completed(self, statuses):
        counts = AggregateCounts.from_statuses(statuses)
        status = derive_batch_status(counts.completed, counts.failed, counts.total)
        all_completed = all(s == ItemStatus.COMPLETED for s in statuses)
        assert (status == BatchStatus.COMPLETED) == all_completed

    @given(st.lists(item_statuses, min_size=1, max_size=50))
    def test_failed_iff_every_item_failed(self, statuses):
        counts = AggregateCounts.from_statuses(statuses)
        status = derive_batch_status(counts.completed, counts.failed, counts.total)
        all_failed = all(s == ItemStatus.FAILED for s in statuses)
        assert (status == BatchStatus.FAILED) == all_failed

    @given(st.lists(item_statuses, min_size=1, max_size=50))
    def test_no_completed_item_never_partial(self, statuses):
        counts = AggregateCounts.from_statuses(statuses)
        status = derive_batch_status(counts.completed, counts.failed, counts.total)
        if counts.completed == 0:
            assert status != BatchStatus.PARTIALLY_COMPLETED

    @given(item_statuses, st.lists(item_statuses, max_size=10))
    def test_terminal_items_accept_no_transition(self, start, targets):
        if ItemStateMachine.is_terminal(start):
            assert not any(ItemStateMachine.can_transition(start, t) for t in targets)


EVENTS = ("SUCCESSFUL_DISBURSEMENT", "FAILED_DISBURSEMENT", "REVERSED_DISBURSEMENT")


class TestRandomDeliveryOrder:
    """Random notification and reconciliation interleavings on a real batch."""

    @pytest.mark.parametrize("seed", range(8))
    async def test_aggregate_tracks_items(
        self, seed, batch, orchestrator, receiver, reconciler, gateway, store
    ):
        rng = random.Random(seed)
        await orchestrator.execute(batch.id)
        references = [build_item_reference(batch.id, item.id) for item in batch.items]
        first_terminal: dict[int, str] = {}

        for _ in range(20):
            index = rng.randrange(len(references))
            if rng.random() < 0.7:
                body = notification_body(references[index], rng.choice(EVENTS))
                await receiver.handle(body, sign(body))
            else:
                if rng.random() < 0.5:
                    gateway.settle(references[index])
                else:
                    gateway.fail(references[index], "Declined")
                await reconciler.reconcile(batch.id)

            items = await store.list_items(batch.id)
            current = await store.require_batch(batch.id)
            counts = AggregateCounts.from_statuses(i.status for i in items)

            assert current.completed_count == counts.completed
            assert current.failed_count == counts.failed
            assert current.completed_count + current.failed_count <= current.item_count
            assert current.status == derive_batch_status(
                counts.completed, counts.failed, counts.total
            )

            for item in items:
                if ItemStateMachine.is_terminal(item.status):
                    first_terminal.setdefault(item.id, item.status)
                    assert item.status == first_terminal[item.id]
