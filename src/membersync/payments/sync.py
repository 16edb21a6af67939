"""Push Ghost member profile edits back to the linked Stripe customer."""

import logging
from typing import Any, Optional

from membersync.errors import MemberSyncError, ValidationError
from membersync.members.models import MemberRecord, StripeLinkage
from membersync.members.store import MembershipStore
from membersync.payments.billing import update_customer

logger = logging.getLogger(__name__)


class MemberNotFoundError(MemberSyncError):
    """Member referenced by a store webhook does not exist."""

    status_code = 404


def edited_member_id(body: Any) -> str:
    """Member id from a Ghost ``member.edited`` webhook body."""
    try:
        member_id = body["member"]["current"]["id"]
    except (KeyError, TypeError):
        member_id = None
    if not isinstance(member_id, str) or not member_id:
        raise ValidationError("Webhook body has no member id")
    return member_id


async def sync_customer(body: Any, store: MembershipStore) -> Optional[MemberRecord]:
    """Copy name and email of an edited member onto its Stripe customer.

    Members without a linkage are left alone.

    Returns:
        The member read from the store

    Raises:
        ValidationError: If the body carries no member id
        MemberNotFoundError: If the member no longer exists
        LinkageError: If the member note holds a malformed linkage
        UpstreamError: If Ghost or Stripe fail
    """
    member_id = edited_member_id(body)

    member = await store.read(member_id)
    if member is None:
        raise MemberNotFoundError("Could not find member", member_id=member_id)

    linkage = StripeLinkage.from_note_or_none(member.note)
    if linkage is None:
        logger.debug(f"Member {member_id} has no Stripe linkage, nothing to sync")
        return member

    await update_customer(linkage.customer_id, email=member.email, name=member.name)
    logger.info(f"Synced member {member_id} to Stripe customer {linkage.customer_id}")
    return member
