"""Tests for the Evolution and Meta webhook routes."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fretebot.api import services as services_module
from fretebot.api.factory import create_app
from fretebot.api.services import Services
from fretebot.whatsapp.config import MetaConfig, ProviderConfig
from fretebot.whatsapp.models import ImageContent, TextContent

from helpers import FakeWhatsAppConfigRepository


@pytest.fixture
def services() -> Services:
    gateway = MagicMock()
    gateway.current_config.return_value = ProviderConfig(meta_verify_tokens=("verify-1",))
    services = Services(
        gateway=gateway,
        engine=MagicMock(),
        monitor=MagicMock(),
        whatsapp_configs=FakeWhatsAppConfigRepository(),
    )
    services_module.set_services(services)
    return services


@pytest.fixture
def client(services, monkeypatch) -> TestClient:
    monkeypatch.delenv("EVOLUTION_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("META_VERIFY_TOKEN", raising=False)
    monkeypatch.delenv("META_APP_SECRET", raising=False)
    return TestClient(create_app(role="public"))


def _evolution_payload(message: dict, remote_jid="5531991570107@s.whatsapp.net", **key_extra) -> dict:
    return {
        "event": "messages.upsert",
        "data": {
            "key": {"id": "3EB0ABCDEF", "remoteJid": remote_jid, "fromMe": False, **key_extra},
            "message": message,
        },
    }


def _meta_payload(*messages: dict) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [{"changes": [{"field": "messages", "value": {"messages": list(messages)}}]}],
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "cid-42"})
        assert response.headers["X-Correlation-ID"] == "cid-42"


class TestEvolutionWebhook:
    def test_private_text_reaches_engine(self, client, services):
        response = client.post(
            "/webhooks/whatsapp/evolution", json=_evolution_payload({"conversation": "oi"})
        )

        assert response.status_code == 200
        services.engine.handle_incoming.assert_called_once_with(
            "5531991570107", TextContent(text="oi")
        )
        services.monitor.process_group_message.assert_not_called()

    def test_private_image_reaches_engine(self, client, services):
        client.post(
            "/webhooks/whatsapp/evolution",
            json=_evolution_payload({"imageMessage": {"mimetype": "image/jpeg"}}),
        )
        _, content = services.engine.handle_incoming.call_args.args
        assert isinstance(content, ImageContent)
        assert content.media_ref == "3EB0ABCDEF"

    def test_group_text_reaches_monitor(self, client, services):
        client.post(
            "/webhooks/whatsapp/evolution",
            json=_evolution_payload(
                {"conversation": "carga de soja"},
                remote_jid="120363@g.us",
                participant="5531977776666@s.whatsapp.net",
            ),
        )

        services.monitor.process_group_message.assert_called_once_with(
            "120363@g.us", "5531977776666", "carga de soja"
        )
        services.engine.handle_incoming.assert_not_called()

    def test_other_events_are_ignored(self, client, services):
        response = client.post("/webhooks/whatsapp/evolution", json={"event": "qrcode.updated"})

        assert response.status_code == 200
        assert response.text == "ignored"
        services.engine.handle_incoming.assert_not_called()

    @pytest.mark.parametrize(
        "body",
        [b"not json", b"[1, 2]", json.dumps({"event": "messages.upsert", "data": {}}).encode()],
    )
    def test_bad_payloads_still_get_200(self, client, services, body):
        response = client.post(
            "/webhooks/whatsapp/evolution", content=body, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        services.engine.handle_incoming.assert_not_called()

    def test_processing_error_does_not_leak(self, client, services):
        services.engine.handle_incoming.side_effect = RuntimeError("boom")
        response = client.post(
            "/webhooks/whatsapp/evolution", json=_evolution_payload({"conversation": "oi"})
        )
        assert response.status_code == 200

    def test_secret_mismatch_is_dropped(self, client, services, monkeypatch):
        monkeypatch.setenv("EVOLUTION_WEBHOOK_SECRET", "s3cret")

        wrong = client.post(
            "/webhooks/whatsapp/evolution",
            json=_evolution_payload({"conversation": "oi"}),
            headers={"X-Webhook-Secret": "nope"},
        )
        assert wrong.status_code == 200
        services.engine.handle_incoming.assert_not_called()

        client.post(
            "/webhooks/whatsapp/evolution",
            json=_evolution_payload({"conversation": "oi"}),
            headers={"X-Webhook-Secret": "s3cret"},
        )
        services.engine.handle_incoming.assert_called_once()


class TestMetaVerification:
    def _verify(self, client, **params):
        return client.get("/webhooks/whatsapp/meta", params=params)

    def test_matching_token_echoes_challenge(self, client):
        response = self._verify(
            client, **{"hub.mode": "subscribe", "hub.verify_token": "verify-1", "hub.challenge": "12345"}
        )
        assert response.status_code == 200
        assert response.text == "12345"

    def test_env_token_is_accepted(self, client, monkeypatch):
        monkeypatch.setenv("META_VERIFY_TOKEN", "from-env")
        response = self._verify(
            client, **{"hub.mode": "subscribe", "hub.verify_token": "from-env", "hub.challenge": "c"}
        )
        assert response.status_code == 200

    def test_wrong_token(self, client):
        response = self._verify(
            client, **{"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "c"}
        )
        assert response.status_code == 403

    def test_missing_params(self, client):
        response = self._verify(client, **{"hub.mode": "subscribe"})
        assert response.status_code == 400

    def test_no_params(self, client):
        response = self._verify(client)
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestMetaWebhook:
    MESSAGE = {"from": "5531991570107", "id": "wamid.HBgM", "type": "text", "text": {"body": "oi"}}

    def test_messages_reach_engine(self, client, services):
        second = {**self.MESSAGE, "id": "wamid.2", "text": {"body": "ticket"}}

        response = client.post("/webhooks/whatsapp/meta", json=_meta_payload(self.MESSAGE, second))

        assert response.status_code == 200
        assert services.engine.handle_incoming.call_count == 2

    def test_non_business_payload_is_ignored(self, client, services):
        response = client.post("/webhooks/whatsapp/meta", json={"object": "page"})
        assert response.status_code == 200
        services.engine.handle_incoming.assert_not_called()

    def test_invalid_shape_still_gets_200(self, client, services):
        response = client.post(
            "/webhooks/whatsapp/meta", json=_meta_payload({"id": "x", "type": "text"})
        )
        assert response.status_code == 200
        services.engine.handle_incoming.assert_not_called()

    def test_signature_is_checked_when_secret_configured(self, client, services):
        services.gateway.current_config.return_value = ProviderConfig(
            meta=MetaConfig(token="t", phone_number_id="PN1", app_secret="app-secret")
        )
        body = json.dumps(_meta_payload(self.MESSAGE)).encode()

        unsigned = client.post(
            "/webhooks/whatsapp/meta", content=body, headers={"Content-Type": "application/json"}
        )
        assert unsigned.status_code == 200
        services.engine.handle_incoming.assert_not_called()

        signature = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
        signed = client.post(
            "/webhooks/whatsapp/meta",
            content=body,
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature},
        )
        assert signed.status_code == 200
        services.engine.handle_incoming.assert_called_once()
