"""Tests for the action channels."""

import pytest

from geosentinel.detection.channels import (
    ChatWebhookChannel,
    HttpResponse,
    IncidentWebhookChannel,
    TemplateRequestChannel,
    build_chat_message,
)
from geosentinel.detection.channels.chat import state_color
from geosentinel.detection.channels.template import substitute
from geosentinel.errors import ActionDispatchError
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import AlertState, MonitorDefinition
from tests.helpers import feature, monitor_doc, point, square


def with_action(action, **overrides) -> MonitorDefinition:
    return MonitorDefinition.model_validate(monitor_doc(action=action, **overrides))


class TestChatWebhook:

    @pytest.mark.parametrize(
        "state, color",
        [
            (AlertState.FIRING, "#f52a2a"),
            (AlertState.STILL_FIRING, "#fc7703"),
            (AlertState.NO_LONGER_FIRING, "#03fc07"),
        ],
    )
    def test_state_color(self, state, color):
        assert state_color(state) == color

    def test_message_names_monitor_and_status(self):
        message = build_chat_message("depot-watch", AlertState.FIRING)
        text = message["attachments"][0]["blocks"][0]["text"]["text"]
        assert "`depot-watch`" in text
        assert "firing" in text

    @pytest.mark.asyncio
    async def test_posts_to_endpoint(self, sender, clock):
        monitor = with_action({"kind": "chat-webhook", "endpoint": "https://chat.example.com/hook"})
        outcome = await ChatWebhookChannel(sender).send(monitor, AlertState.FIRING, [], clock.now)

        assert outcome.attempted and outcome.success
        call = sender.calls[0]
        assert call["method"] == "post"
        assert call["url"] == "https://chat.example.com/hook"
        assert call["body"]["attachments"][0]["color"] == "#f52a2a"

    @pytest.mark.asyncio
    async def test_rejects_action_of_another_kind(self, sender, clock):
        monitor = with_action({"kind": "template-request", "endpoint": "https://ops.example.com/alerts"})
        with pytest.raises(ActionDispatchError):
            await ChatWebhookChannel(sender).send(monitor, AlertState.FIRING, [], clock.now)
        assert sender.calls == []


class TestTemplateRequest:

    def test_substitute_replaces_both_tokens(self):
        assert substitute("%monitorName%:%monitorStatus%", "m", "firing") == "m:firing"

    @pytest.mark.asyncio
    async def test_tokens_substituted_in_url_headers_and_body(self, sender, clock):
        monitor = with_action(
            {
                "kind": "template-request",
                "endpoint": "https://ops.example.com/alerts/%monitorName%",
                "method": "put",
                "headers": {"X-Monitor": "%monitorName%"},
                "body": {"text": "%monitorName% is %monitorStatus%", "nested": ["%monitorStatus%"]},
            }
        )

        await TemplateRequestChannel(sender).send(monitor, AlertState.STILL_FIRING, [], clock.now)

        call = sender.calls[0]
        assert call["method"] == "put"
        assert call["url"] == "https://ops.example.com/alerts/vehicles-in-zones"
        assert call["headers"] == {"X-Monitor": "vehicles-in-zones"}
        assert call["body"] == {
            "text": "vehicles-in-zones is stillFiring",
            "nested": ["stillFiring"],
        }

    @pytest.mark.asyncio
    async def test_default_headers_when_none_given(self, sender, clock):
        monitor = with_action(
            {"kind": "template-request", "endpoint": "https://ops.example.com/x", "method": "get"}
        )
        await TemplateRequestChannel(sender).send(monitor, AlertState.FIRING, [], clock.now)
        assert sender.calls[0]["headers"] == {"Content-Type": "application/json"}

    @pytest.mark.asyncio
    async def test_substitution_is_not_escaped(self, sender, clock):
        # A double quote in the name breaks the serialized body
        monitor = with_action(
            {
                "kind": "template-request",
                "endpoint": "https://ops.example.com/x",
                "method": "post",
                "body": {"text": "%monitorName%"},
            },
            name='say "hi"',
        )
        with pytest.raises(ActionDispatchError):
            await TemplateRequestChannel(sender).send(monitor, AlertState.FIRING, [], clock.now)
        assert sender.calls == []


class TestIncidentWebhook:

    @pytest.fixture
    def monitor(self) -> MonitorDefinition:
        return with_action(
            {
                "kind": "incident-webhook",
                "endpoint": "https://incidents.example.com/api",
                "organisation": "org-1",
                "token": "secret",
                "template": "geofence",
            },
            description="vehicle entered a zone",
        )

    @pytest.fixture
    def matches(self):
        return [
            ZoneMatch(
                zone_feature=feature(square()),
                target_features=[feature(point(0.1, 0.1)), feature(point(0.2, 0.2))],
            )
        ]

    @pytest.mark.asyncio
    async def test_firing_opens_incident(self, sender, clock, monitor, matches):
        sender.queue(HttpResponse(ok=True, status=201, json_body={"_id": "inc-42"}))

        outcome = await IncidentWebhookChannel(sender).send(
            monitor, AlertState.FIRING, matches, clock.now
        )

        assert outcome.attempted
        assert monitor.action.incident_id == "inc-42"
        call = sender.calls[0]
        assert call["headers"]["Authorization"] == "Bearer secret"
        data = call["body"]["data"]
        assert call["body"]["organisation"] == "org-1"
        assert data["name"] == "vehicles-in-zones"
        assert data["description"] == "vehicle entered a zone"
        geometries = data["location"]["geometry"]["geometries"]
        assert len(geometries) == 3
        assert geometries[0]["type"] == "Polygon"

    @pytest.mark.asyncio
    async def test_missing_incident_id_is_an_error(self, sender, clock, monitor, matches):
        sender.queue(HttpResponse(ok=True, status=200, json_body={}))
        with pytest.raises(ActionDispatchError):
            await IncidentWebhookChannel(sender).send(monitor, AlertState.FIRING, matches, clock.now)

    @pytest.mark.asyncio
    async def test_no_longer_firing_removes_incident(self, sender, clock, monitor):
        monitor.action.incident_id = "inc-42"

        await IncidentWebhookChannel(sender).send(monitor, AlertState.NO_LONGER_FIRING, [], clock.now)

        assert monitor.action.incident_id is None
        assert sender.calls[0]["body"] == {
            "organisation": "org-1",
            "operation": "remove",
            "id": "inc-42",
        }

    @pytest.mark.asyncio
    async def test_close_without_open_incident_is_skipped(self, sender, clock, monitor):
        outcome = await IncidentWebhookChannel(sender).send(
            monitor, AlertState.NO_LONGER_FIRING, [], clock.now
        )
        assert not outcome.attempted
        assert sender.calls == []

    @pytest.mark.asyncio
    async def test_still_firing_never_resends(self, sender, clock, monitor, matches):
        outcome = await IncidentWebhookChannel(sender).send(
            monitor, AlertState.STILL_FIRING, matches, clock.now
        )
        assert not outcome.attempted
        assert sender.calls == []
