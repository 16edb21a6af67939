"""Billing-portal link delivery for existing members."""

import logging

from membersync.context import AppContext
from membersync.errors import AuthError, ValidationError
from membersync.members.models import StripeLinkage
from membersync.notifications.mailer import PORTAL_SUBJECT, render_portal_message
from membersync.payments.billing import create_portal_session

logger = logging.getLogger(__name__)


async def send_portal_link(email: str, ctx: AppContext) -> str:
    """Email a Stripe billing-portal link to the member with this email.

    Returns:
        The portal session URL

    Raises:
        ValidationError: If email is empty
        AuthError: Unless exactly one member matches
        LinkageError: If the member has no valid Stripe linkage
        UpstreamError: If Ghost or Stripe fail
    """
    if not email:
        raise ValidationError("Missing email")

    members = await ctx.store.find_by_email(email)
    if len(members) != 1:
        raise AuthError("Membership required", email=email, count=len(members))

    member = members[0]
    linkage = StripeLinkage.from_note(member.note)
    portal_url = await create_portal_session(linkage.customer_id)

    mailer = ctx.mailer
    text = render_portal_message(
        ctx.template,
        from_name=mailer.from_name,
        from_email=mailer.from_email,
        to_name=member.name,
        to_email=member.email,
        portal_url=portal_url,
    )
    await mailer.send_text(member.name, member.email, PORTAL_SUBJECT, text)
    logger.info(f"Sent portal link to member {member.id}")
    return portal_url
