import pytest
import requests

from container_scheduler.config import Settings
from container_scheduler.scheduler import dispatcher as dispatcher_module
from container_scheduler.scheduler.dispatcher import (
    MAX_OUTPUT_CHARS,
    HttpActionDispatcher,
    LoggingActionDispatcher,
    build_dispatcher,
)


class _FakeResponse:
    def __init__(self, status_code=200, text="done"):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posted(monkeypatch):
    calls = []
    state = {"response": _FakeResponse(), "error": None}

    def _post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if state["error"] is not None:
            raise state["error"]
        return state["response"]

    monkeypatch.setattr(dispatcher_module.requests, "post", _post)
    return calls, state


@pytest.mark.parametrize(
    "action, params, url, payload",
    [
        ("restart", {}, "http://api.local/containers/web-api/restart", {}),
        ("rebuild", {"no_cache": True}, "http://api.local/containers/web-api/rebuild", {"no_cache": True}),
        ("scale_up", {}, "http://api.local/containers/web-api/scale", {"direction": "up", "count": 1}),
        ("scale_down", {"count": 3}, "http://api.local/containers/web-api/scale", {"direction": "down", "count": 3}),
        ("signal", {}, "http://api.local/containers/web-api/signal", {"signal": 15}),
        ("signal", {"signal": 1}, "http://api.local/containers/web-api/signal", {"signal": 1}),
        ("snapshot", {"label": "nightly"}, "http://api.local/snapshots", {"container_name": "web-api", "label": "nightly"}),
    ],
)
def test_build_request(action, params, url, payload):
    http = HttpActionDispatcher("http://api.local/")
    assert http.build_request("web-api", action, params) == (url, payload)


def test_container_name_is_quoted_in_path():
    http = HttpActionDispatcher("http://api.local")
    url, _ = http.build_request("team/web api", "restart", {})
    assert url == "http://api.local/containers/team%2Fweb%20api/restart"


def test_execute_success(posted):
    calls, state = posted
    http = HttpActionDispatcher("http://api.local", token="s3cret", timeout=7)

    result = http.execute("web-api", "restart", {})

    assert result.success is True
    assert result.output == "done"
    assert calls[0]["url"] == "http://api.local/containers/web-api/restart"
    assert calls[0]["headers"]["Authorization"] == "Bearer s3cret"
    assert calls[0]["timeout"] == 7


def test_execute_without_token_sends_no_authorization(posted):
    calls, _ = posted
    HttpActionDispatcher("http://api.local").execute("web-api", "restart", {})
    assert "Authorization" not in calls[0]["headers"]


def test_execute_non_2xx_is_failure(posted):
    _, state = posted
    state["response"] = _FakeResponse(status_code=404, text="no such container")

    result = HttpActionDispatcher("http://api.local").execute("web-api", "restart", {})

    assert result.success is False
    assert result.error == "Container API returned status 404"
    assert result.output == "no such container"


def test_execute_request_exception_is_failure(posted):
    _, state = posted
    state["error"] = requests.exceptions.ConnectionError("connection refused")

    result = HttpActionDispatcher("http://api.local").execute("web-api", "restart", {})

    assert result.success is False
    assert result.error.startswith("Container API request failed:")
    assert "connection refused" in result.error


def test_execute_truncates_output(posted):
    _, state = posted
    state["response"] = _FakeResponse(text="x" * (MAX_OUTPUT_CHARS + 500))

    result = HttpActionDispatcher("http://api.local").execute("web-api", "restart", {})

    assert len(result.output) == MAX_OUTPUT_CHARS


def test_logging_dispatcher_reports_success():
    result = LoggingActionDispatcher().execute("web-api", "snapshot", {})
    assert result.success is True
    assert result.output == "dry-run: snapshot web-api"


def test_build_dispatcher_uses_http_when_configured():
    settings = Settings(container_api_url="http://api.local", container_api_token="t", container_api_timeout_seconds=5)
    dispatcher = build_dispatcher(settings)
    assert isinstance(dispatcher, HttpActionDispatcher)
    assert dispatcher.token == "t"
    assert dispatcher.timeout == 5


def test_build_dispatcher_falls_back_to_dry_run(monkeypatch):
    monkeypatch.delenv("CONTAINER_API_URL", raising=False)
    assert isinstance(build_dispatcher(Settings(container_api_url="")), LoggingActionDispatcher)
