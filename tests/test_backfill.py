"""Tests for the one-off member backfill."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeStore

from membersync.errors import InvariantViolationError
from membersync.members.models import MemberRecord, StripeLinkage
from membersync.operations.backfill import backfill_member, run_backfill

FIND = "membersync.operations.backfill.find_customers_by_email"
SUBS = "membersync.operations.backfill.fetch_customer_subscriptions"
UPDATE = "membersync.operations.backfill.update_customer"


def _subscription(cancel=False):
    return {
        "id": "sub_1",
        "status": "active",
        "cancel_at_period_end": cancel,
        "current_period_start": 1704067200,
        "current_period_end": 1706745600,
        "plan": {"amount": 500, "product": "prod_test_123"},
    }


class PagedStore(FakeStore):
    async def iter_members(self, limit=100):
        for member in list(self.members.values()):
            yield member


def _store(*emails):
    return PagedStore(
        [MemberRecord(id=f"mem_{i}", email=e, name=f"Member {i}", note="legacy") for i, e in enumerate(emails)]
    )


class TestBackfillMember:

    @pytest.mark.asyncio
    async def test_links_member_to_customer(self):
        store = _store("a@x.com")
        member = store.members["mem_0"]

        with patch(FIND, AsyncMock(return_value=[{"id": "cus_1"}])), \
             patch(SUBS, AsyncMock(return_value=[_subscription(cancel=True)])), \
             patch(UPDATE, new_callable=AsyncMock) as mock_update:
            patched = await backfill_member(member, store)

        assert patched is True
        mock_update.assert_awaited_once_with("cus_1", name="Member 0")
        assert member.labels == {"Stripe", "Pending deletion"}
        linkage = StripeLinkage.from_note(member.note)
        assert (linkage.customer_id, linkage.subscription_id) == ("cus_1", "sub_1")
        assert linkage.pending_deletion is True
        assert list(json.loads(member.note)) == ["stripe"]

    @pytest.mark.asyncio
    async def test_no_customer_skipped(self):
        store = _store("a@x.com")

        with patch(FIND, AsyncMock(return_value=[])), \
             patch(UPDATE, new_callable=AsyncMock) as mock_update:
            patched = await backfill_member(store.members["mem_0"], store)

        assert patched is False
        mock_update.assert_not_called()
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_several_customers_fail(self):
        store = _store("a@x.com")

        with patch(FIND, AsyncMock(return_value=[{"id": "cus_1"}, {"id": "cus_2"}])):
            with pytest.raises(InvariantViolationError, match="customers"):
                await backfill_member(store.members["mem_0"], store)

    @pytest.mark.asyncio
    async def test_subscription_count_must_be_one(self):
        store = _store("a@x.com")

        with patch(FIND, AsyncMock(return_value=[{"id": "cus_1"}])), \
             patch(SUBS, AsyncMock(return_value=[])):
            with pytest.raises(InvariantViolationError, match="subscriptions"):
                await backfill_member(store.members["mem_0"], store)


class TestRunBackfill:

    @pytest.mark.asyncio
    async def test_counts_patched_members(self):
        store = _store("a@x.com", "b@x.com", "c@x.com")
        customers = {"a@x.com": [{"id": "cus_a"}], "b@x.com": [], "c@x.com": [{"id": "cus_c"}]}

        with patch(FIND, AsyncMock(side_effect=lambda email: customers[email])), \
             patch(SUBS, AsyncMock(return_value=[_subscription()])), \
             patch(UPDATE, new_callable=AsyncMock):
            patched = await run_backfill(store)

        assert patched == 2

    @pytest.mark.asyncio
    async def test_limit(self):
        store = _store("a@x.com", "b@x.com", "c@x.com")

        with patch(FIND, AsyncMock(return_value=[])) as mock_find:
            await run_backfill(store, limit=2)

        assert mock_find.await_count == 2
