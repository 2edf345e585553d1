"""Tests for HTTP client implementations."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from ratelimitclient import (
    RLC,
    ConfigAwareHttpClient,
    HttpClient,
    RateLimitedHttpClient,
    SessionHttpClient,
)


@pytest.fixture(autouse=True)
def reset_config():
    RLC.reset()
    yield
    RLC.reset()


class RecordingHttpClient(HttpClient):
    """Mock HTTP client recording every prepared request it is given."""

    def __init__(self):
        self.requests: list[requests.PreparedRequest] = []
        self.response = MagicMock(spec=requests.Response)
        self.response.status_code = 200

    def send(self, request):
        self.requests.append(request)
        return self.response


# =============================================================================
# HttpClient Helper Tests
# =============================================================================


class TestHttpClientHelpers:
    """Tests for the request/get/post helpers built on send()."""

    def test_get_builds_prepared_request(self):
        """get() should prepare a GET with headers and query string."""
        client = RecordingHttpClient()

        response = client.get(
            "http://example.com/items",
            headers={"X-Trace": "abc"},
            params={"page": 2},
        )

        assert response is client.response
        request = client.requests[0]
        assert request.method == "GET"
        assert request.url == "http://example.com/items?page=2"
        assert request.headers["X-Trace"] == "abc"
        assert request.body is None

    def test_post_sends_json_body(self):
        """post() should send data as a JSON body."""
        client = RecordingHttpClient()

        client.post("http://example.com/items", data={"name": "widget"})

        request = client.requests[0]
        assert request.method == "POST"
        assert json.loads(request.body) == {"name": "widget"}
        assert request.headers["Content-Type"] == "application/json"

    def test_request_upper_cases_method(self):
        """request() should accept a lower-case method."""
        client = RecordingHttpClient()

        client.request("delete", "http://example.com/items/1")

        assert client.requests[0].method == "DELETE"

    def test_request_fails_with_empty_url(self):
        """Should reject an empty URL."""
        client = RecordingHttpClient()

        with pytest.raises(AssertionError, match="URL cannot be empty"):
            client.get("")

    def test_request_fails_with_empty_method(self):
        """Should reject an empty method."""
        client = RecordingHttpClient()

        with pytest.raises(AssertionError, match="Method cannot be empty"):
            client.request("", "http://example.com")

    def test_http_client_is_abstract(self):
        """HttpClient should not be instantiable without send()."""
        with pytest.raises(TypeError):
            HttpClient()  # type: ignore[abstract]


# =============================================================================
# SessionHttpClient Tests
# =============================================================================


class TestSessionHttpClient:
    """Tests for the requests.Session transport."""

    def test_defaults_come_from_config(self):
        """Timeout and stream should be read from RLC.config.http."""
        RLC.configure(http={"request_timeout": 12.5, "stream": False})

        client = SessionHttpClient(session=MagicMock())

        assert client.timeout == 12.5
        assert client.stream is False

    def test_streams_when_config_leaves_stream_unset(self):
        """With http.stream unset, a bare SessionHttpClient should stream."""
        client = SessionHttpClient(session=MagicMock())

        assert RLC.config.http.stream is None
        assert client.stream is True

    def test_explicit_values_win_over_config(self):
        """Constructor arguments should override the configuration."""
        RLC.configure(http={"request_timeout": 12.5})

        client = SessionHttpClient(session=MagicMock(), timeout=3.0, stream=False)

        assert client.timeout == 3.0
        assert client.stream is False

    def test_send_uses_session_with_timeout_and_stream(self):
        """send() should pass timeout and stream to Session.send()."""
        session = MagicMock()
        client = SessionHttpClient(session=session, timeout=7.0)
        request = requests.Request("GET", "http://example.com").prepare()

        response = client.send(request)

        session.send.assert_called_once_with(request, timeout=7.0, stream=True)
        assert response is session.send.return_value

    def test_get_goes_through_session(self):
        """get() should end up in Session.send()."""
        session = MagicMock()
        client = SessionHttpClient(session=session)

        client.get("http://example.com/items")

        sent = session.send.call_args[0][0]
        assert sent.method == "GET"
        assert sent.url == "http://example.com/items"

    def test_send_fails_with_none_request(self):
        """Should reject a None request."""
        client = SessionHttpClient(session=MagicMock())

        with pytest.raises(AssertionError, match="Request cannot be None"):
            client.send(None)  # type: ignore[arg-type]

    def test_init_fails_with_zero_timeout(self):
        """Should reject a zero timeout."""
        with pytest.raises(AssertionError, match="timeout must be greater than 0"):
            SessionHttpClient(session=MagicMock(), timeout=0)

    def test_creates_session_when_none_given(self):
        """Should create its own requests.Session by default."""
        client = SessionHttpClient()

        assert isinstance(client._session, requests.Session)
        client.close()

    def test_close_closes_session(self):
        """close() should close the session."""
        session = MagicMock()
        client = SessionHttpClient(session=session)

        client.close()

        session.close.assert_called_once()

    def test_transport_errors_propagate(self):
        """Session exceptions should reach the caller."""
        session = MagicMock()
        session.send.side_effect = requests.ConnectionError("refused")
        client = SessionHttpClient(session=session)

        with pytest.raises(requests.ConnectionError):
            client.get("http://example.com")


# =============================================================================
# ConfigAwareHttpClient Tests
# =============================================================================


class TestConfigAwareHttpClient:
    """Tests for the client assembled from RLC.config."""

    def test_uses_transport_directly_when_rate_limit_disabled(self):
        """Without rate limiting the delegate should be the bare transport."""
        client = ConfigAwareHttpClient()

        delegate = client._get_delegate()

        assert isinstance(delegate, SessionHttpClient)

    def test_does_not_stream_when_rate_limit_disabled(self):
        """Without rate limiting bodies should be downloaded eagerly."""
        client = ConfigAwareHttpClient()

        delegate = client._get_delegate()

        assert delegate.stream is False

    def test_streams_when_rate_limit_enabled(self):
        """With rate limiting the transport should stream so the slot follows the body."""
        RLC.configure(rate_limit={"enabled": True})
        client = ConfigAwareHttpClient()

        delegate = client._get_delegate()

        assert delegate.delegate.stream is True

    def test_explicit_stream_setting_wins(self):
        """An explicit http.stream should apply whether or not rate limiting is on."""
        RLC.configure(http={"stream": True})
        streaming = ConfigAwareHttpClient()._get_delegate()
        RLC.configure(http={"stream": False}, rate_limit={"enabled": True})
        eager = ConfigAwareHttpClient()._get_delegate()

        assert streaming.stream is True
        assert eager.delegate.stream is False

    def test_wraps_transport_when_rate_limit_enabled(self):
        """With rate limiting the transport should be wrapped using the config values."""
        RLC.configure(
            rate_limit={"enabled": True, "limit": 20, "unit": 2.0, "retries": 1, "max_wait_time": 9.0},
        )
        client = ConfigAwareHttpClient()

        delegate = client._get_delegate()

        assert isinstance(delegate, RateLimitedHttpClient)
        assert isinstance(delegate.delegate, SessionHttpClient)
        assert delegate.limit == 20
        assert delegate.unit == 2.0
        assert delegate.retries == 1
        assert delegate.max_wait_time == 9.0

    def test_delegate_is_created_lazily(self):
        """Configuration done after construction should still apply."""
        client = ConfigAwareHttpClient()
        assert client._delegate is None

        RLC.configure(rate_limit={"enabled": True})

        assert isinstance(client._get_delegate(), RateLimitedHttpClient)

    def test_delegate_is_created_once(self):
        """Concurrent first calls should build a single delegate."""
        client = ConfigAwareHttpClient()

        with patch.object(client, "_create_delegate", wraps=client._create_delegate) as create:
            threads = [threading.Thread(target=client._get_delegate) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert create.call_count == 1

    def test_send_goes_through_delegate(self):
        """Requests should be forwarded to the delegate."""
        client = ConfigAwareHttpClient()
        recorder = RecordingHttpClient()
        client._delegate = recorder

        response = client.get("http://example.com/items")

        assert response is recorder.response
        assert recorder.requests[0].url == "http://example.com/items"


# =============================================================================
# Helpers Through RateLimitedHttpClient
# =============================================================================


class TestHelpersThroughRateLimitedHttpClient:
    """The get/post helpers should be paced and gated like send()."""

    def test_get_goes_through_the_gate(self):
        """get() on the rate limiter should reach the delegate and free the slot."""
        recorder = RecordingHttpClient()
        recorder.response.raw = None
        client = RateLimitedHttpClient(delegate=recorder, limit=5, unit=1.0)

        response = client.get("http://example.com/items", params={"q": "x"})

        assert response.status_code == 200
        assert recorder.requests[0].url == "http://example.com/items?q=x"
        assert client.in_flight == 0

    def test_post_keeps_slot_until_close(self):
        """post() should hold its slot until the body is closed."""
        recorder = RecordingHttpClient()
        recorder.response.raw = MagicMock()
        client = RateLimitedHttpClient(delegate=recorder, limit=5, unit=1.0)

        response = client.post("http://example.com/items", data={"a": 1})

        assert client.in_flight == 1
        response.raw.close()
        assert client.in_flight == 0
