"""Tests for lifecycle event classification."""

import pytest

from membersync.errors import UnsupportedEventError, ValidationError
from membersync.payments.events import EventType, Intent, classify_event, parse_event_type


class TestParseEventType:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("customer.subscription.created", EventType.CREATED),
            ("customer.subscription.updated", EventType.UPDATED),
            ("customer.subscription.deleted", EventType.DELETED),
        ],
    )
    def test_subscription_events(self, raw, expected):
        assert parse_event_type(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            "invoice.paid",
            "customer.subscription.paused",
            "customer.subscription.trial_will_end",
            "created",
            "",
            None,
        ],
    )
    def test_other_events_unsupported(self, raw):
        with pytest.raises(UnsupportedEventError):
            parse_event_type(raw)

    def test_unsupported_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event_type("charge.refunded")

        assert exc_info.value.status_code == 400


class TestClassifyEvent:

    @pytest.mark.parametrize("event_type", [EventType.CREATED, EventType.UPDATED])
    @pytest.mark.parametrize("cancel", [False, True])
    def test_active_create_or_update_activates(self, event_type, cancel):
        assert classify_event(event_type, "active", cancel) == Intent.ACTIVATE

    @pytest.mark.parametrize("status", ["active", "canceled", "incomplete"])
    def test_deleted_deactivates(self, status):
        assert classify_event(EventType.DELETED, status, False) == Intent.DEACTIVATE

    @pytest.mark.parametrize("status", ["incomplete", "past_due", "trialing", "unpaid"])
    def test_inactive_update_ignored(self, status):
        assert classify_event(EventType.UPDATED, status, False) == Intent.IGNORE

    def test_accepts_raw_stripe_type(self):
        assert classify_event("customer.subscription.created", "active", False) == Intent.ACTIVATE

    def test_accepts_short_type(self):
        assert classify_event("deleted", "canceled", False) == Intent.DEACTIVATE

    def test_unknown_type_fails(self):
        with pytest.raises(UnsupportedEventError):
            classify_event("invoice.paid", "active", False)
