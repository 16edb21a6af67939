"""End-to-end tests for Stripe webhook processing.

Stripe reads are patched at the webhook module; the membership store is the
in-memory FakeStore from conftest.
"""

import json
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from conftest import make_event, make_snapshot, sign

from membersync.errors import UpstreamError
from membersync.members.models import MemberRecord, StripeLinkage
from membersync.payments.webhooks import handle_webhook

FETCH = "membersync.payments.webhooks.fetch_subscription"


def _stripe_member(member_id="mem_1", email="a@x.com"):
    note = StripeLinkage("cus_1", "sub_1", False, date(2024, 1, 1), date(2024, 2, 1)).to_note()
    return MemberRecord(id=member_id, email=email, name="Alice", labels={"Stripe"}, note=note)


async def _deliver(ctx, payload, header="sign"):
    if header == "sign":
        header = sign(payload)
    return await handle_webhook(payload, header, ctx)


class TestSignatureFailures:
    """Rejected deliveries never reach Stripe or Ghost."""

    @pytest.mark.asyncio
    async def test_missing_signature_returns_401_without_remote_calls(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            response = await _deliver(ctx, make_event(), header=None)

        assert response.status == 401
        mock_fetch.assert_not_called()
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_wrong_signature_returns_401(self, ctx, store):
        payload = make_event()

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            response = await _deliver(ctx, payload, header=sign(payload, secret="whsec_other"))

        assert response.status == 401
        assert json.loads(response.text) == {"error": "Wrong Stripe webhook signature"}
        mock_fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_header_returns_401(self, ctx):
        response = await _deliver(ctx, make_event(), header="v1=abc")

        assert response.status == 401


class TestValidationFailures:

    @pytest.mark.asyncio
    async def test_unsupported_type_returns_400(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            response = await _deliver(ctx, make_event("invoice.paid"))

        assert response.status == 400
        mock_fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_json_returns_400(self, ctx):
        response = await _deliver(ctx, b"not json")

        assert response.status == 400

    @pytest.mark.asyncio
    async def test_missing_subscription_id_returns_400(self, ctx):
        payload = json.dumps({"type": "customer.subscription.created", "data": {}}).encode()

        response = await _deliver(ctx, payload)

        assert response.status == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type",
        [
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ],
    )
    async def test_wrong_product_returns_400_without_writes(self, ctx, store, event_type):
        store.members["mem_1"] = _stripe_member()

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(product_id="prod_other")
            response = await _deliver(ctx, make_event(event_type))

        assert response.status == 400
        assert store.calls == []


class TestLifecycle:
    """Scenarios across the subscription lifecycle."""

    @pytest.mark.asyncio
    async def test_created_active_creates_member(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot()
            response = await _deliver(ctx, make_event("customer.subscription.created", "sub_1"))

        assert response.status == 201
        mock_fetch.assert_awaited_once_with("sub_1")
        assert store.writes == [("add", "a@x.com", frozenset({"Stripe"}), True)]

    @pytest.mark.asyncio
    async def test_created_pending_deletion_labels(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(cancel_at_period_end=True)
            response = await _deliver(ctx, make_event())

        assert response.status == 201
        assert store.writes == [("add", "a@x.com", frozenset({"Stripe", "Pending deletion"}), True)]

    @pytest.mark.asyncio
    async def test_updated_existing_member_returns_200(self, ctx, store):
        store.members["mem_1"] = _stripe_member()

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(cancel_at_period_end=True)
            response = await _deliver(ctx, make_event("customer.subscription.updated"))

        assert response.status == 200
        assert store.members["mem_1"].labels == {"Stripe", "Pending deletion"}

    @pytest.mark.asyncio
    async def test_updated_inactive_is_acknowledged_noop(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(status="past_due")
            response = await _deliver(ctx, make_event("customer.subscription.updated"))

        assert response.status == 200
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_deleted_with_member_deletes(self, ctx, store):
        store.members["mem_1"] = _stripe_member()

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(status="canceled")
            response = await _deliver(ctx, make_event("customer.subscription.deleted"))

        assert response.status == 201
        assert store.writes == [("delete", "mem_1")]

    @pytest.mark.asyncio
    async def test_deleted_without_member_returns_200(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot(status="canceled")
            response = await _deliver(ctx, make_event("customer.subscription.deleted"))

        assert response.status == 200
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_same_activation_twice_yields_one_member(self, ctx, store):
        payload = make_event()

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot()
            first = await _deliver(ctx, payload)
            note_after_first = next(iter(store.members.values())).note
            second = await _deliver(ctx, payload)

        assert (first.status, second.status) == (201, 200)
        assert len(store.members) == 1
        member = next(iter(store.members.values()))
        assert member.labels == {"Stripe"}
        assert member.note == note_after_first


class TestServerErrors:

    @pytest.mark.asyncio
    async def test_upstream_error_returns_500(self, ctx, store):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = UpstreamError("Stripe call failed", status=503)
            response = await _deliver(ctx, make_event())

        assert response.status == 500
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_members_returns_500(self, ctx, store):
        store.members["mem_1"] = _stripe_member("mem_1")
        store.members["mem_2"] = _stripe_member("mem_2")

        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = make_snapshot()
            response = await _deliver(ctx, make_event())

        assert response.status == 500
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_returns_500(self, ctx):
        with patch(FETCH, new_callable=AsyncMock) as mock_fetch:
            mock_fetch.side_effect = RuntimeError("boom")
            response = await _deliver(ctx, make_event())

        assert response.status == 500
        assert "boom" not in response.text
