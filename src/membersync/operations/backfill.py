"""One-off backfill linking existing Ghost members to Stripe.

For every member, finds the Stripe customer with the same email, pushes
the member's name to that customer and rewrites the member's labels and
Stripe linkage with the same rules the webhook uses.

Usage:
    python -m membersync.operations.backfill [--limit 100]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from membersync.config import get_config
from membersync.errors import InvariantViolationError
from membersync.members.models import MemberRecord
from membersync.members.reconciler import build_linkage, desired_labels
from membersync.members.store import MembershipStore
from membersync.payments.billing import (
    SubscriptionSnapshot,
    configure_stripe,
    fetch_customer_subscriptions,
    find_customers_by_email,
    subscription_period,
    subscription_product_id,
    update_customer,
)

logger = logging.getLogger(__name__)


async def backfill_member(member: MemberRecord, store: MembershipStore) -> bool:
    """Link one member to its Stripe customer.

    Returns:
        True if the member was patched, False if no customer matched

    Raises:
        InvariantViolationError: Several customers for the email, or a
            customer without exactly one subscription
        UpstreamError: If Ghost or Stripe fail
    """
    customers = await find_customers_by_email(member.email)
    if len(customers) > 1:
        raise InvariantViolationError(
            "Invalid customers length", email=member.email, count=len(customers)
        )
    if not customers:
        logger.info(f"Could not find customer matching {member.email}")
        return False

    customer_id = customers[0]["id"]
    subscriptions = await fetch_customer_subscriptions(customer_id)
    if len(subscriptions) != 1:
        raise InvariantViolationError(
            "Invalid subscriptions length",
            customer=customer_id,
            count=len(subscriptions),
        )

    subscription = subscriptions[0]
    period_start, period_end = subscription_period(subscription)
    snapshot = SubscriptionSnapshot(
        subscription_id=subscription["id"],
        customer_id=customer_id,
        customer_email=member.email,
        customer_name=member.name,
        product_id=subscription_product_id(subscription),
        status=subscription["status"],
        cancel_at_period_end=bool(subscription["cancel_at_period_end"]),
        period_start=period_start,
        period_end=period_end,
    )

    await update_customer(customer_id, name=member.name)
    await store.edit(
        member.id,
        labels=desired_labels(snapshot.cancel_at_period_end),
        note=build_linkage(snapshot).to_note(),
    )
    logger.info(f"Patched {member.email}")
    return True


async def run_backfill(store: MembershipStore, limit: Optional[int] = None) -> int:
    """Patch members until the store is exhausted or limit members were seen.

    Returns:
        Number of members patched
    """
    logger.info("Patching members…")
    seen = 0
    patched = 0

    async for member in store.iter_members():
        if limit is not None and seen >= limit:
            break
        seen += 1
        if await backfill_member(member, store):
            patched += 1

    logger.info(f"Done: {patched} of {seen} members patched")
    return patched


def main() -> None:
    """CLI entry point for the backfill."""
    parser = argparse.ArgumentParser(
        description="Link existing Ghost members to their Stripe subscriptions",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        metavar="N",
        help="Stop after N members (default: all).",
    )
    args = parser.parse_args()
    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be ≥ 1")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = get_config()
        configure_stripe(config)
        store = MembershipStore.from_config(config)
        asyncio.run(run_backfill(store, limit=args.limit))
    except Exception as e:
        logger.error(f"Backfill failed: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
