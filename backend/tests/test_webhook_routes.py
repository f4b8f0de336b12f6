from fastapi import BackgroundTasks

from backend.app.billing import BackgroundTaskRunner, WebhookOutcome, WebhookOutcomeStatus
from backend.app.routes import billing as routes_module
from backend.app.schemas.billing import WebhookEnvelope


class RecordingService:
    def __init__(self):
        self.events = []
        self.addon_events = []

    def handle_webhook(self, event):
        self.events.append(event)
        return WebhookOutcome(event_type=event.event_type, status=WebhookOutcomeStatus.USER_NOT_FOUND)

    def handle_addon_webhook(self, event):
        self.addon_events.append(event)
        return WebhookOutcome(event_type=event.event_type, status=WebhookOutcomeStatus.PROCESSED)


def _install(monkeypatch):
    service = RecordingService()
    runners = []

    def fake_get_webhook_service(runner):
        runners.append(runner)
        return service

    monkeypatch.setattr(routes_module, "get_webhook_service", fake_get_webhook_service)
    return service, runners


def test_primary_webhook_is_acknowledged_even_when_not_applied(monkeypatch):
    service, runners = _install(monkeypatch)
    payload = WebhookEnvelope(
        id="ev_1",
        event_type="subscription_created",
        occurred_at=1714560000,
        content={"subscription": {"id": "sub_1"}, "customer": {"email": "a@x.com"}},
    )

    ack = routes_module.receive_chargebee_webhook(payload, BackgroundTasks())

    assert ack.success is True
    assert ack.message == "Webhook processed successfully"
    assert service.events[0].content.subscription.id == "sub_1"
    assert service.events[0].occurred_at.year == 2024
    assert isinstance(runners[0], BackgroundTaskRunner)


def test_malformed_content_is_acknowledged_without_processing(monkeypatch, caplog):
    service, _ = _install(monkeypatch)
    payload = WebhookEnvelope(event_type="subscription_created", content={"subscription": {"status": "active"}})

    with caplog.at_level("WARNING", logger="billing.webhooks"):
        ack = routes_module.receive_chargebee_webhook(payload, BackgroundTasks())

    assert ack.success is True
    assert service.events == []
    assert "Discarding malformed subscription_created webhook" in caplog.text


def test_unknown_fields_in_envelope_are_ignored(monkeypatch):
    service, _ = _install(monkeypatch)
    payload = WebhookEnvelope.model_validate(
        {"id": "ev_2", "event_type": "customer_changed", "api_version": "v2", "content": {}}
    )

    ack = routes_module.receive_chargebee_webhook(payload, BackgroundTasks())

    assert ack.success is True
    assert service.events[0].event_type == "customer_changed"


def test_addon_webhook_is_routed_to_addon_handler(monkeypatch):
    service, _ = _install(monkeypatch)
    payload = WebhookEnvelope(
        event_type="subscription_renewed",
        content={"subscription": {"id": "addon_sub", "next_billing_at": 1717200000}},
    )

    ack = routes_module.receive_chargebee_addon_webhook(payload, BackgroundTasks())

    assert ack.success is True
    assert ack.message is None
    assert service.events == []
    assert service.addon_events[0].content.subscription.next_billing_at is not None


def test_background_runner_defers_side_effects():
    calls = []
    tasks = BackgroundTasks()

    BackgroundTaskRunner(tasks).submit("welcome_email", calls.append, "sent")

    assert calls == []
    assert len(tasks.tasks) == 1
