"""Ghost membership records and their reconciliation with Stripe."""

from membersync.members.models import MemberRecord, StripeLinkage
from membersync.members.store import MembershipStore

__all__ = ["MemberRecord", "MembershipStore", "StripeLinkage"]
