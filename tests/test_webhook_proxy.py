from unittest import mock

import pytest
import requests

from insight_utils.errors import UnreachableError, UpstreamError
from insight_utils.webhook_proxy import WebhookProxy, webhook_path
from conftest import make_response


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


class TestForward:
    def test_posts_same_body_and_returns_json(self, session):
        session.post.return_value = make_response(200, {"results": [1]})
        proxy = WebhookProxy("http://n8n:5678/", timeout=12, session=session)
        body = {"ownerNames": ["A"], "dateRange": "2025-08-01 to 2025-08-30"}

        data = proxy.forward("/webhook-test/get-performance", body)

        assert data == {"results": [1]}
        session.post.assert_called_once_with(
            "http://n8n:5678/webhook-test/get-performance", json=body, timeout=12
        )
        assert body == {"ownerNames": ["A"], "dateRange": "2025-08-01 to 2025-08-30"}

    def test_empty_body_is_none(self, session):
        session.post.return_value = make_response(200, b"")
        assert WebhookProxy("http://n8n", session=session).forward("x", {}) is None

    def test_non_json_body_returned_as_text(self, session):
        session.post.return_value = make_response(200, "Workflow was started")
        assert WebhookProxy("http://n8n", session=session).forward("x", {}) == "Workflow was started"

    def test_non_2xx_preserves_status_and_body(self, session):
        session.post.return_value = make_response(404, '{"message":"webhook not registered"}')

        with pytest.raises(UpstreamError) as exc:
            WebhookProxy("http://n8n", session=session).forward("/webhook-test/analyze-sct", {})

        assert exc.value.status_code == 404
        assert exc.value.body == '{"message":"webhook not registered"}'
        assert exc.value.details["upstreamStatus"] == 404
        assert exc.value.url == "http://n8n/webhook-test/analyze-sct"

    def test_connection_refused_is_503(self, session):
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(UnreachableError) as exc:
            WebhookProxy("http://n8n", session=session).forward("x", {})
        assert exc.value.status_code == 503

    def test_timeout_is_502(self, session):
        session.post.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(UnreachableError) as exc:
            WebhookProxy("http://n8n", session=session).forward("x", {})
        assert exc.value.status_code == 502

    def test_no_retry(self, session):
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(UnreachableError):
            WebhookProxy("http://n8n", session=session).forward("x", {})
        assert session.post.call_count == 1


class TestHealth:
    def test_healthy_with_workflow_count(self, session):
        session.get.side_effect = [
            make_response(401),
            make_response(200, {"data": [{"active": True}, {"active": False}, {"active": True}]}),
        ]
        status = WebhookProxy("http://n8n", session=session).health()
        assert status["status"] == "healthy"
        assert status["workflows"] == {"total": 3, "active": 2}

    def test_unreachable_never_raises(self, session):
        session.get.side_effect = requests.exceptions.ConnectionError("down")
        status = WebhookProxy("http://n8n", session=session).health()
        assert status["status"] == "unreachable"

    def test_server_error(self, session):
        session.get.return_value = make_response(500)
        assert WebhookProxy("http://n8n", session=session).health()["status"] == "unhealthy"


def test_webhook_path():
    assert webhook_path("analyze-sct", "webhook-test") == "/webhook-test/analyze-sct"
    assert webhook_path("/get-performance", "/webhook/") == "/webhook/get-performance"
