"""Dedicated add-on subscription endpoint lifecycle."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.billing import AddonStatus, WebhookEvent, WebhookOutcomeStatus
from backend.app.billing.addons import AddonLifecycleHandler, parse_customer_user_id
from backend.app.billing.dispatcher import AddonWebhookDispatcher
from backend.app.billing.resolver import UserResolver

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _addon_event(event_type: str, *, customer_id: str = "user_1", email: str = "a@x.com", **subscription) -> WebhookEvent:
    payload = {
        "id": "sub_addon",
        "status": "active",
        "plan_quantity": 2,
        "plan_unit_price": 499,
        "current_term_start": 1738368000,
        "current_term_end": 1740787200,
        "next_billing_at": 1740787200,
    }
    payload.update(subscription)
    return WebhookEvent.model_validate(
        {
            "event_type": event_type,
            "content": {"subscription": payload, "customer": {"id": customer_id, "email": email}},
        }
    )


@pytest.fixture
def addon_dispatcher(users, addons, provider):
    handler = AddonLifecycleHandler(
        users=users,
        addons=addons,
        resolver=UserResolver(users=users, provider=provider),
        grace_period_days=3,
        clock=lambda: FIXED_NOW,
    )
    return AddonWebhookDispatcher(addons=handler)


@pytest.mark.parametrize(
    ("customer_id", "expected"),
    [("user_42", 42), ("user_0", None), ("user_abc", None), ("cus_42", None), (None, None)],
)
def test_parse_customer_user_id(customer_id, expected):
    assert parse_customer_user_id(customer_id) == expected


def test_created_records_addon_and_adds_slots(addon_dispatcher, users, addons, add_user):
    add_user(email="owner@x.com", plan_code="gold", renewable_credits=50, payasyougo_credits=4)

    outcome = addon_dispatcher.dispatch(_addon_event("subscription_created"))

    assert outcome.granted
    user = users.users[1]
    assert user.extra_context_slots == 2
    assert user.plan_code == "gold"
    assert user.renewable_credits == 50
    assert user.payasyougo_credits == 4
    addon = addons.addons[0]
    assert addon.slots == 2
    assert addon.price == pytest.approx(4.99)
    assert addon.provider_status == "active"
    assert addon.billing_period_start == datetime(2025, 2, 1, tzinfo=timezone.utc)


def test_created_defaults_quantity_and_price(addon_dispatcher, addons, add_user):
    add_user()

    addon_dispatcher.dispatch(_addon_event("subscription_created", plan_quantity=None, plan_unit_price=None))

    assert addons.addons[0].slots == 1
    assert addons.addons[0].price == pytest.approx(3.99)


def test_created_falls_back_to_customer_email(addon_dispatcher, users, add_user):
    add_user(user_id=7)

    outcome = addon_dispatcher.dispatch(_addon_event("subscription_created", customer_id="cus_foreign"))

    assert outcome.granted
    assert users.users[7].extra_context_slots == 2


def test_created_redelivery_is_ignored(addon_dispatcher, users, addons, add_user):
    add_user()

    addon_dispatcher.dispatch(_addon_event("subscription_created"))
    second = addon_dispatcher.dispatch(_addon_event("subscription_created"))

    assert second.status == WebhookOutcomeStatus.IGNORED
    assert users.users[1].extra_context_slots == 2
    assert len(addons.addons) == 1


def test_created_for_unknown_customer_is_terminal(addon_dispatcher, addons):
    outcome = addon_dispatcher.dispatch(_addon_event("subscription_created", customer_id="bogus", email=""))

    assert outcome.status == WebhookOutcomeStatus.USER_NOT_FOUND
    assert addons.addons == []


def test_cancelled_starts_grace_period_without_removing_slots(addon_dispatcher, users, addons, add_user):
    add_user()
    addon_dispatcher.dispatch(_addon_event("subscription_created"))

    outcome = addon_dispatcher.dispatch(_addon_event("subscription_cancelled", status="cancelled"))

    assert outcome.granted
    addon = addons.addons[0]
    assert addon.status == AddonStatus.CANCELLED
    assert addon.expires_at == FIXED_NOW + timedelta(days=3)
    assert addon.provider_status == "cancelled"
    assert users.users[1].extra_context_slots == 2


def test_payment_failed_enters_grace_period(addon_dispatcher, addons, add_user):
    add_user()
    addon_dispatcher.dispatch(_addon_event("subscription_created"))

    addon_dispatcher.dispatch(_addon_event("payment_failed"))

    assert addons.addons[0].status == AddonStatus.GRACE_PERIOD
    assert addons.addons[0].expires_at == FIXED_NOW + timedelta(days=3)


def test_reactivated_clears_expiry(addon_dispatcher, addons, add_user):
    add_user()
    addon_dispatcher.dispatch(_addon_event("subscription_created"))
    addon_dispatcher.dispatch(_addon_event("subscription_cancelled"))

    addon_dispatcher.dispatch(_addon_event("subscription_reactivated", next_billing_at=1743465600))

    addon = addons.addons[0]
    assert addon.status == AddonStatus.ACTIVE
    assert addon.expires_at is None
    assert addon.next_billing_date == datetime(2025, 4, 1, tzinfo=timezone.utc)


def test_renewed_refreshes_next_billing_date(addon_dispatcher, addons, add_user):
    add_user()
    addon_dispatcher.dispatch(_addon_event("subscription_created"))

    addon_dispatcher.dispatch(_addon_event("subscription_renewed", next_billing_at=1743465600))

    assert addons.addons[0].status == AddonStatus.ACTIVE
    assert addons.addons[0].next_billing_date == datetime(2025, 4, 1, tzinfo=timezone.utc)


def test_status_change_for_unknown_addon_is_ignored(addon_dispatcher):
    outcome = addon_dispatcher.dispatch(_addon_event("subscription_renewed"))

    assert outcome.status == WebhookOutcomeStatus.IGNORED


def test_unknown_addon_event_is_unhandled(addon_dispatcher):
    outcome = addon_dispatcher.dispatch(_addon_event("subscription_paused"))

    assert outcome.status == WebhookOutcomeStatus.UNHANDLED_EVENT


def _addon_purchase_event() -> WebhookEvent:
    return WebhookEvent.model_validate(
        {
            "event_type": "subscription_created",
            "content": {
                "subscription": {
                    "id": "sub_addon",
                    "status": "active",
                    "plan_quantity": 1,
                    "subscription_items": [
                        {"item_price_id": "Context-Addon-Monthly-USD-Monthly", "item_type": "plan", "quantity": 1}
                    ],
                },
                "customer": {"id": "user_1", "email": "a@x.com"},
            },
        }
    )


@pytest.mark.parametrize("addon_endpoint_first", [True, False])
def test_addon_purchase_delivered_to_both_endpoints_grants_once(
    webhook_service, users, addons, add_user, addon_endpoint_first
):
    add_user(plan_code="gold", renewable_credits=100)
    event = _addon_purchase_event()

    if addon_endpoint_first:
        first = webhook_service.handle_addon_webhook(event)
        second = webhook_service.handle_webhook(event)
    else:
        first = webhook_service.handle_webhook(event)
        second = webhook_service.handle_addon_webhook(event)

    assert first.status == WebhookOutcomeStatus.PROCESSED
    assert second.status == WebhookOutcomeStatus.IGNORED
    assert second.detail == "already recorded"
    assert users.users[1].extra_context_slots == 1
    assert len(addons.addons) == 1
    assert users.users[1].plan_code == "gold"


def test_primary_addon_redelivery_grants_once(webhook_service, users, addons, add_user):
    add_user()

    webhook_service.handle_webhook(_addon_purchase_event())
    redelivered = webhook_service.handle_webhook(_addon_purchase_event())

    assert redelivered.status == WebhookOutcomeStatus.IGNORED
    assert users.users[1].extra_context_slots == 1
    assert len(addons.addons) == 1
