"""Membership records and the Stripe linkage stored in their note."""

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from membersync.errors import LinkageError

STRIPE_LABEL = "Stripe"
PENDING_DELETION_LABEL = "Pending deletion"

_LINKAGE_KEY = "stripe"


def _parse_date(value: Any, name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise LinkageError(f"Linkage field {name} must be a date string")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise LinkageError(f"Linkage field {name} is not an ISO date: {value!r}") from None


def _parse_note(note: Optional[str]) -> dict[str, Any]:
    if not note:
        return {}
    try:
        data = json.loads(note)
    except json.JSONDecodeError as e:
        raise LinkageError(f"Member note is not valid JSON: {e.msg}") from None
    if not isinstance(data, dict):
        raise LinkageError("Member note must be a JSON object")
    return data


@dataclass(frozen=True)
class StripeLinkage:
    """Cross-reference from a member to its Stripe customer and subscription."""

    customer_id: str
    subscription_id: str
    pending_deletion: bool = False
    starts: Optional[date] = None
    ends: Optional[date] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer": self.customer_id,
            "subscription": self.subscription_id,
            "pendingDeletion": self.pending_deletion,
            "starts": self.starts.isoformat() if self.starts else None,
            "ends": self.ends.isoformat() if self.ends else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StripeLinkage":
        """Validate and build a linkage from its JSON form.

        Raises:
            LinkageError: On missing or mis-typed fields
        """
        if not isinstance(data, dict):
            raise LinkageError("Linkage must be a JSON object")

        customer = data.get("customer")
        subscription = data.get("subscription")
        if not isinstance(customer, str) or not customer:
            raise LinkageError("Linkage is missing the customer id")
        if not isinstance(subscription, str) or not subscription:
            raise LinkageError("Linkage is missing the subscription id")

        pending = data.get("pendingDeletion", False)
        if not isinstance(pending, bool):
            raise LinkageError("Linkage field pendingDeletion must be a boolean")

        return cls(
            customer_id=customer,
            subscription_id=subscription,
            pending_deletion=pending,
            starts=_parse_date(data.get("starts"), "starts"),
            ends=_parse_date(data.get("ends"), "ends"),
        )

    @classmethod
    def from_note(cls, note: Optional[str]) -> "StripeLinkage":
        """Parse the linkage out of a member note.

        Raises:
            LinkageError: If the note is empty, not JSON, or has no valid linkage
        """
        data = _parse_note(note)
        if _LINKAGE_KEY not in data:
            raise LinkageError("Member note has no Stripe linkage")
        return cls.from_dict(data[_LINKAGE_KEY])

    @classmethod
    def from_note_or_none(cls, note: Optional[str]) -> Optional["StripeLinkage"]:
        """Like from_note, but None when the note carries no linkage at all."""
        data = _parse_note(note)
        if _LINKAGE_KEY not in data:
            return None
        return cls.from_dict(data[_LINKAGE_KEY])

    def to_note(self, existing_note: Optional[str] = None) -> str:
        """Serialise into note text, keeping other keys of an existing note."""
        data = _parse_note(existing_note) if existing_note else {}
        data[_LINKAGE_KEY] = self.to_dict()
        return json.dumps(data, indent=2)


@dataclass
class MemberRecord:
    """A member as returned by the membership store."""

    id: str
    email: str
    name: str = ""
    labels: set[str] = field(default_factory=set)
    note: Optional[str] = None

    @property
    def is_stripe_member(self) -> bool:
        return STRIPE_LABEL in self.labels

    @property
    def linkage(self) -> Optional[StripeLinkage]:
        return StripeLinkage.from_note_or_none(self.note)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MemberRecord":
        """Build from a Ghost admin API member object."""
        labels = set()
        for label in data.get("labels") or []:
            name = label.get("name") if isinstance(label, dict) else label
            if name:
                labels.add(name)
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            name=data.get("name") or "",
            labels=labels,
            note=data.get("note"),
        )


def labels_payload(labels: set[str]) -> list[dict[str, str]]:
    """Ghost label list, Stripe first for stable ordering."""
    ordered = sorted(labels, key=lambda name: (name != STRIPE_LABEL, name))
    return [{"name": name} for name in ordered]
