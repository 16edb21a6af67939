"""Shared fixtures: config, subscription snapshots, an in-memory member store."""

import json
from datetime import date
from unittest.mock import AsyncMock, Mock

import pytest
from jinja2 import Environment, StrictUndefined

from membersync.config.settings import AppConfig
from membersync.context import AppContext
from membersync.members.models import MemberRecord
from membersync.members.reconciler import EmailLocks
from membersync.notifications.mailer import Mailer
from membersync.payments.billing import SubscriptionSnapshot
from membersync.payments.signature import compute_signature
from membersync.stats.aggregator import StatsHolder

PRODUCT_ID = "prod_test_123"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def config(tmp_path) -> AppConfig:
    """Config independent of the process environment."""
    return AppConfig(
        _env_file=None,
        stripe_restricted_api_key="rk_test_123",
        stripe_webhook_signing_secret=WEBHOOK_SECRET,
        stripe_product_id=PRODUCT_ID,
        ghost_api_url="https://blog.example.com",
        ghost_admin_api_key="6489a7c0b7e1:" + "ab" * 32,
        ghost_membership_page="https://blog.example.com/membership/",
        from_name="Jane Doe",
        from_email="jane@example.com",
        stats_file=tmp_path / "stats.json",
    )


def make_snapshot(**overrides) -> SubscriptionSnapshot:
    fields = dict(
        subscription_id="sub_1",
        customer_id="cus_1",
        customer_email="a@x.com",
        customer_name="Alice Example",
        product_id=PRODUCT_ID,
        status="active",
        cancel_at_period_end=False,
        period_start=date(2024, 1, 1),
        period_end=date(2024, 2, 1),
    )
    fields.update(overrides)
    return SubscriptionSnapshot(**fields)


def make_event(event_type: str = "customer.subscription.created", subscription_id: str = "sub_1") -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "type": event_type,
            "data": {"object": {"id": subscription_id, "object": "subscription"}},
        }
    ).encode("utf-8")


def sign(payload: bytes, timestamp: int = 1700000000, secret: str = WEBHOOK_SECRET) -> str:
    return f"t={timestamp},v1={compute_signature(timestamp, payload, secret)}"


class FakeStore:
    """In-memory stand-in for MembershipStore with call recording."""

    def __init__(self, members=None):
        self.members: dict[str, MemberRecord] = {m.id: m for m in members or []}
        self.calls: list[tuple] = []
        self._next_id = 1

    async def find_by_email(self, email):
        self.calls.append(("find_by_email", email))
        return [m for m in self.members.values() if m.email == email]

    async def read(self, member_id):
        self.calls.append(("read", member_id))
        return self.members.get(member_id)

    async def add(self, email, name, labels, note, send_email=True):
        self.calls.append(("add", email, frozenset(labels), send_email))
        member_id = f"mem_{self._next_id}"
        self._next_id += 1
        member = MemberRecord(id=member_id, email=email, name=name, labels=set(labels), note=note)
        self.members[member_id] = member
        return member

    async def edit(self, member_id, labels=None, note=None):
        self.calls.append(("edit", member_id, frozenset(labels or ())))
        member = self.members[member_id]
        if labels is not None:
            member.labels = set(labels)
        if note is not None:
            member.note = note
        return member

    async def delete(self, member_id):
        self.calls.append(("delete", member_id))
        del self.members[member_id]

    @property
    def writes(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("add", "edit", "delete")]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def ctx(config, store) -> AppContext:
    mailer = Mock(spec=Mailer)
    mailer.from_name = config.from_name
    mailer.from_email = config.from_email
    mailer.send_text = AsyncMock()
    return AppContext(
        config=config,
        store=store,
        mailer=mailer,
        template=Environment(undefined=StrictUndefined).from_string(
            "Hi {{ to.firstName }},\n\n{{ message }}\n\n{{ from.firstName }}"
        ),
        stats=StatsHolder(),
        locks=EmailLocks(),
    )
