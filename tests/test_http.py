import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from brandstore.http import action_error, action_success, build_session, current_time_zone_date


@pytest.fixture
def unavailable_server():
    """Local server answering 503 to everything, counting requests per method."""
    seen = {"GET": 0, "POST": 0}

    class Handler(BaseHTTPRequestHandler):
        def _answer(self):
            seen[self.command] += 1
            length = int(self.headers.get("Content-Length") or 0)
            if length:
                self.rfile.read(length)
            self.send_response(503)
            self.send_header("Content-Length", "0")
            self.end_headers()

        do_GET = _answer
        do_POST = _answer

        def log_message(self, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}/", seen
    server.shutdown()
    server.server_close()


def test_action_reply_shapes():
    assert action_success("done", extra=1) == {
        "statusCode": 200, "body": {"success": True, "message": "done", "extra": 1},
    }
    assert action_error(None, "boom") == {
        "statusCode": 500, "body": {"success": False, "statusCode": 500, "error": "boom"},
    }
    assert action_error(404, "missing")["statusCode"] == 404


def test_current_time_zone_date_format():
    now = datetime(2026, 10, 18, 22, 4, 5)  # naive UTC
    assert current_time_zone_date("America/Los_Angeles", now) == "Oct 18, 2026, 3:04:05 PM"


def test_session_retries_gateway_errors_only():
    retry = build_session().get_adapter("https://example.com").max_retries
    assert set(retry.status_forcelist) == {502, 503, 504}
    assert retry.total == 3
    assert "POST" not in retry.allowed_methods
    assert {"GET", "PUT", "DELETE"} <= set(retry.allowed_methods)


def test_post_is_delivered_once_on_gateway_error(unavailable_server):
    url, seen = unavailable_server
    resp = build_session(backoff_factor=0).post(url, data="<cXML/>", timeout=5)
    assert resp.status_code == 503
    assert seen["POST"] == 1


def test_get_is_retried_on_gateway_error(unavailable_server):
    url, seen = unavailable_server
    resp = build_session(backoff_factor=0).get(url, timeout=5)
    assert resp.status_code == 503
    assert seen["GET"] == 4
