"""Membership state machine driven by subscription lifecycle intents.

Each call re-reads the membership store before mutating, so redelivered or
out-of-order events converge on the same end state:

    intent      matches  action
    ACTIVATE    0        add member (welcome email sent by the store)
    ACTIVATE    1        edit labels and linkage in place
    ACTIVATE    2+       InvariantViolationError
    DEACTIVATE  1        delete member
    DEACTIVATE  0 / 2+   no-op
    IGNORE      -        no-op, no lookup

Subscriptions for another product are rejected before any lookup. Members
without the Stripe label are never edited or deleted.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from membersync.errors import InvariantViolationError, WrongProductError
from membersync.members.models import (
    PENDING_DELETION_LABEL,
    STRIPE_LABEL,
    MemberRecord,
    StripeLinkage,
)
from membersync.members.store import MembershipStore
from membersync.payments.billing import SubscriptionSnapshot
from membersync.payments.events import Intent

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Mutation applied to the membership store."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    NOOP = "noop"


@dataclass
class ReconcileResult:
    action: Action
    member: Optional[MemberRecord] = None
    reason: str = ""


class EmailLocks:
    """Per-email locks serialising lookup+mutate within this process.

    An entry lives only while some task holds or waits for it, so the
    registry stays bounded by the number of in-flight deliveries.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, email: str) -> AsyncIterator[None]:
        key = email.lower()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def desired_labels(cancel_at_period_end: bool) -> set[str]:
    labels = {STRIPE_LABEL}
    if cancel_at_period_end:
        labels.add(PENDING_DELETION_LABEL)
    return labels


def merge_labels(existing: set[str], cancel_at_period_end: bool) -> set[str]:
    """Keep unmanaged labels, recompute the managed ones."""
    unmanaged = existing - {STRIPE_LABEL, PENDING_DELETION_LABEL}
    return unmanaged | desired_labels(cancel_at_period_end)


def build_linkage(
    snapshot: SubscriptionSnapshot,
    existing: Optional[StripeLinkage] = None,
) -> StripeLinkage:
    """Linkage for a subscription; ids of an existing linkage are preserved."""
    return StripeLinkage(
        customer_id=existing.customer_id if existing else snapshot.customer_id,
        subscription_id=existing.subscription_id if existing else snapshot.subscription_id,
        pending_deletion=snapshot.cancel_at_period_end,
        starts=snapshot.period_start,
        ends=snapshot.period_end,
    )


async def reconcile(
    intent: Intent,
    snapshot: SubscriptionSnapshot,
    store: MembershipStore,
    product_id: str,
    locks: Optional[EmailLocks] = None,
) -> ReconcileResult:
    """Apply the minimal membership mutation for a lifecycle intent.

    Raises:
        WrongProductError: If the subscription is for another product
        InvariantViolationError: On ACTIVATE with several members for one email
        UpstreamError: If a membership store call fails
    """
    if snapshot.product_id != product_id:
        raise WrongProductError(
            "Invalid Stripe subscription product ID",
            subscription=snapshot.subscription_id,
            product=snapshot.product_id,
        )

    if intent == Intent.IGNORE:
        logger.info(
            f"Ignoring subscription {snapshot.subscription_id} (status={snapshot.status})"
        )
        return ReconcileResult(Action.NOOP, reason="ignored")

    if locks is None:
        return await _reconcile_locked(intent, snapshot, store)

    async with locks.hold(snapshot.customer_email):
        return await _reconcile_locked(intent, snapshot, store)


async def _reconcile_locked(
    intent: Intent,
    snapshot: SubscriptionSnapshot,
    store: MembershipStore,
) -> ReconcileResult:
    members = await store.find_by_email(snapshot.customer_email)

    if intent in (Intent.ACTIVATE, Intent.UPDATE):
        if len(members) == 0:
            return await _create(snapshot, store)
        if len(members) == 1:
            return await _update(members[0], snapshot, store)
        logger.error(
            f"Found {len(members)} members for {snapshot.customer_email} "
            f"(subscription={snapshot.subscription_id}, "
            f"member_ids={[m.id for m in members]})"
        )
        raise InvariantViolationError(
            "Invalid member length",
            email=snapshot.customer_email,
            count=len(members),
        )

    # DEACTIVATE
    if len(members) != 1:
        if len(members) > 1:
            logger.warning(
                f"Skipping delete: {len(members)} members for {snapshot.customer_email}"
            )
        else:
            logger.info(f"No member to delete for {snapshot.customer_email}")
        return ReconcileResult(Action.NOOP, reason=f"{len(members)} matching members")

    member = members[0]
    if not member.is_stripe_member:
        logger.warning(f"Not deleting member {member.id}: no {STRIPE_LABEL} label")
        return ReconcileResult(Action.NOOP, member=member, reason="not a Stripe member")

    await store.delete(member.id)
    logger.info(f"Member {member.id} deleted ({snapshot.customer_email})")
    logger.debug(f"Member deleted: {member}")
    return ReconcileResult(Action.DELETED, member=member)


async def _create(snapshot: SubscriptionSnapshot, store: MembershipStore) -> ReconcileResult:
    linkage = build_linkage(snapshot)
    member = await store.add(
        email=snapshot.customer_email,
        name=snapshot.customer_name,
        labels=desired_labels(snapshot.cancel_at_period_end),
        note=linkage.to_note(),
        send_email=True,
    )
    logger.info(f"Member {member.id} added ({snapshot.customer_email})")
    logger.debug(f"Member added: {member}")
    return ReconcileResult(Action.CREATED, member=member)


async def _update(
    member: MemberRecord,
    snapshot: SubscriptionSnapshot,
    store: MembershipStore,
) -> ReconcileResult:
    if not member.is_stripe_member:
        logger.warning(f"Not editing member {member.id}: no {STRIPE_LABEL} label")
        return ReconcileResult(Action.NOOP, member=member, reason="not a Stripe member")

    linkage = build_linkage(snapshot, member.linkage)
    updated = await store.edit(
        member.id,
        labels=merge_labels(member.labels, snapshot.cancel_at_period_end),
        note=linkage.to_note(member.note),
    )
    logger.info(f"Member {member.id} updated ({snapshot.customer_email})")
    logger.debug(f"Member updated: {updated}")
    return ReconcileResult(Action.UPDATED, member=updated)
