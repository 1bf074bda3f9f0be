"""Tests for the provider HTTP clients (requests.Session mocked)."""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from fretebot.whatsapp import http
from fretebot.whatsapp.config import EvolutionConfig, MetaConfig
from fretebot.whatsapp.evolution_client import EvolutionClient
from fretebot.whatsapp.http import ProviderError
from fretebot.whatsapp.meta_client import MetaCloudClient


def _response(json_data=None, status_code=200, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.content = content
    return response


def _http_error(status_code: int) -> requests.HTTPError:
    return requests.HTTPError(response=_response(status_code=status_code))


@pytest.fixture(autouse=True)
def _no_retry_delay(monkeypatch):
    monkeypatch.setattr(http, "RETRY_DELAY", 0)


class TestRequest:
    def test_retries_once_on_connection_error(self):
        session = MagicMock()
        ok = _response()
        session.request.side_effect = [requests.ConnectionError(), ok]

        assert http.request(session, "GET", "http://x", provider="p", operation="op") is ok
        assert session.request.call_count == 2

    def test_retries_once_on_5xx(self):
        session = MagicMock()
        failing = _response(status_code=503)
        failing.raise_for_status.side_effect = _http_error(503)
        session.request.side_effect = [failing, failing]

        with pytest.raises(ProviderError) as exc_info:
            http.request(session, "GET", "http://x", provider="p", operation="op")

        assert exc_info.value.status_code == 503
        assert session.request.call_count == 2

    def test_no_retry_on_4xx(self):
        session = MagicMock()
        failing = _response(status_code=401)
        failing.raise_for_status.side_effect = _http_error(401)
        session.request.return_value = failing

        with pytest.raises(ProviderError):
            http.request(session, "GET", "http://x", provider="p", operation="op")
        assert session.request.call_count == 1

    def test_invalid_json_body(self):
        response = _response()
        response.json.side_effect = ValueError("bad json")
        with pytest.raises(ProviderError, match="invalid json"):
            http.json_body(response, provider="p", operation="op")


@pytest.fixture
def evolution_session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def evolution(evolution_session) -> EvolutionClient:
    config = EvolutionConfig(base_url="http://evo:8080/", api_key="k", instance="fretebot", config_id="cfg-1")
    return EvolutionClient(config, session=evolution_session)


class TestEvolutionClient:
    def test_api_key_header(self, evolution_session, evolution):
        evolution_session.headers.update.assert_called_once_with(
            {"apikey": "k", "Content-Type": "application/json"}
        )

    def test_send_text(self, evolution_session, evolution):
        evolution_session.request.return_value = _response({})

        evolution.send_text("5531991570107", "ola")

        method, url = evolution_session.request.call_args.args
        assert (method, url) == ("POST", "http://evo:8080/message/sendText/fretebot")
        assert evolution_session.request.call_args.kwargs["json"] == {
            "number": "5531991570107",
            "text": "ola",
        }

    @pytest.mark.parametrize(
        "body,expected",
        [({"instance": {"state": "open"}}, True), ({"state": "close"}, False)],
    )
    def test_connection_state(self, evolution_session, evolution, body, expected):
        evolution_session.request.return_value = _response(body)
        assert evolution.is_available() is expected

    def test_connection_state_error_means_unavailable(self, evolution_session, evolution):
        evolution_session.request.side_effect = requests.ConnectionError()
        assert evolution.connection_state() is None
        assert evolution.is_available() is False

    def test_download_media_decodes_base64(self, evolution_session, evolution):
        evolution_session.request.return_value = _response(
            {"base64": base64.b64encode(b"%PDF").decode()}
        )

        assert evolution.download_media("MSG1") == b"%PDF"
        assert evolution_session.request.call_args.kwargs["json"] == {
            "message": {"key": {"id": "MSG1"}}
        }

    def test_download_media_without_body(self, evolution_session, evolution):
        evolution_session.request.return_value = _response({})
        with pytest.raises(ProviderError):
            evolution.download_media("MSG1")

    def test_pairing_code_from_nested_qrcode(self, evolution_session, evolution):
        evolution_session.request.return_value = _response({"qrcode": {"base64": "data:image/png;..."}})
        assert evolution.get_pairing_code() == "data:image/png;..."

    def test_fetch_groups_maps_fields(self, evolution_session, evolution):
        evolution_session.request.return_value = _response(
            [{"id": "1@g.us", "subject": "Fretes MG", "size": 40, "desc": None}]
        )
        assert evolution.fetch_groups() == [
            {"id": "1@g.us", "name": "Fretes MG", "size": 40, "desc": ""}
        ]

    def test_set_webhook(self, evolution_session, evolution):
        evolution_session.request.return_value = _response({})

        evolution.set_webhook("https://bot.example.com/webhooks/whatsapp/evolution")

        webhook = evolution_session.request.call_args.kwargs["json"]["webhook"]
        assert webhook["url"] == "https://bot.example.com/webhooks/whatsapp/evolution"
        assert "MESSAGES_UPSERT" in webhook["events"]


class TestMetaCloudClient:
    @pytest.fixture
    def session(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def client(self, session, monkeypatch) -> MetaCloudClient:
        monkeypatch.delenv("META_GRAPH_API_VERSION", raising=False)
        return MetaCloudClient(MetaConfig(token="tok", phone_number_id="PN1"), session=session)

    def test_send_text(self, session, client):
        session.request.return_value = _response({})

        client.send_text("5531991570107", "ola")

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "https://graph.facebook.com/v20.0/PN1/messages")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["json"]["text"] == {"body": "ola"}
        assert kwargs["json"]["messaging_product"] == "whatsapp"

    def test_unconfigured_is_unavailable(self, session):
        assert not MetaCloudClient(MetaConfig(token="", phone_number_id="PN1"), session=session).is_available()

    def test_download_media_resolves_url_first(self, session, client):
        session.request.side_effect = [
            _response({"url": "https://lookaside.fbsbx.com/m/1"}),
            _response(content=b"\xff\xd8"),
        ]

        assert client.download_media("MEDIA9") == b"\xff\xd8"
        urls = [c.args[1] for c in session.request.call_args_list]
        assert urls == ["https://graph.facebook.com/v20.0/MEDIA9", "https://lookaside.fbsbx.com/m/1"]

    def test_send_media_by_link(self, session, client):
        session.request.return_value = _response({})

        client.send_media("55", "document", "https://x/nf.pdf", caption="NF", filename="nf.pdf")

        body = session.request.call_args.kwargs["json"]
        assert body["document"] == {"link": "https://x/nf.pdf", "caption": "NF", "filename": "nf.pdf"}

    def test_upload_rejects_invalid_base64(self, session, client):
        with pytest.raises(ProviderError, match="invalid base64"):
            client.upload_media("image", "not base64!!")
        session.request.assert_not_called()
