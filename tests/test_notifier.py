import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from canarykit.notifier import (
    Field,
    MSTeams,
    NotifierError,
    NotifierFactory,
    Slack,
    post_message,
)


class _Capture(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.requests.append((self.headers.get("Content-type"), json.loads(body)))
        reply = self.server.reply
        self.send_response(self.server.status)
        self.send_header("Content-Length", str(len(reply)))
        self.end_headers()
        self.wfile.write(reply)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def hook():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Capture)
    server.requests = []
    server.status = 200
    server.reply = b""
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _url(server):
    return f"http://127.0.0.1:{server.server_address[1]}/"


def test_post_message(hook):
    post_message(_url(hook), {"status": "success"})
    content_type, payload = hook.requests[0]
    assert payload["status"] == "success"
    assert content_type == "application/json"


def test_post_message_error_status(hook):
    hook.status = 500
    hook.reply = b"boom"
    with pytest.raises(NotifierError, match="boom"):
        post_message(_url(hook), {"status": "success"})


def test_post_message_non_200_success_status(hook):
    hook.status = 202
    with pytest.raises(NotifierError):
        post_message(_url(hook), {"status": "success"})


def test_post_message_unmarshallable():
    with pytest.raises(NotifierError, match="marshalling"):
        post_message("http://127.0.0.1:1/", {"bad": object()})


def test_slack_post(hook):
    slack = Slack(_url(hook), "test", "test")
    slack.post("podinfo", "test", "test", None, True)
    _, payload = hook.requests[0]
    assert payload["attachments"][0]["author_name"] == "podinfo.test"
    assert payload["attachments"][0]["color"] == "danger"


def test_slack_payload_fields_and_color():
    slack = Slack("https://hooks.example.com/x", "flagger", "general")
    payload = slack.payload("podinfo", "test", "done", [Field("Target", "podinfo")], False)
    attachment = payload["attachments"][0]
    assert payload["channel"] == "general"
    assert payload["username"] == "flagger"
    assert attachment["color"] == "good"
    assert attachment["mrkdwn_in"] == ["text"]
    assert attachment["fields"] == [{"title": "Target", "value": "podinfo", "short": False}]
    assert "text" not in payload


def test_slack_defaults_icon_emoji():
    slack = Slack("https://hooks.example.com/x", "flagger", "general")
    assert slack.icon_emoji == ":rocket:"


@pytest.mark.parametrize(
    "url, username, channel, message",
    [
        ("not a url", "u", "c", "invalid Slack hook URL"),
        ("", "u", "c", "invalid Slack hook URL"),
        ("https://hooks.example.com/x", "", "c", "empty Slack username"),
        ("https://hooks.example.com/x", "u", "", "empty Slack channel"),
    ],
)
def test_slack_validation(url, username, channel, message):
    with pytest.raises(NotifierError, match=message):
        Slack(url, username, channel)


def test_teams_post(hook):
    teams = MSTeams(_url(hook))
    teams.post("podinfo", "test", "test", None, True)
    _, payload = hook.requests[0]
    assert payload["sections"][0]["activitySubtitle"] == "podinfo.test"
    assert payload["themeColor"] == "FF0000"


def test_teams_payload():
    teams = MSTeams("https://hooks.example.com/x")
    payload = teams.payload("podinfo", "test", "promoted", [Field("a", "b")], False)
    assert payload["@type"] == "MessageCard"
    assert payload["themeColor"] == "0076D7"
    assert payload["summary"] == "podinfo.test"
    assert payload["sections"][0]["activityTitle"] == "promoted"
    assert payload["sections"][0]["facts"] == [{"name": "a", "value": "b"}]


def test_teams_invalid_url():
    with pytest.raises(NotifierError, match="invalid MS Teams webhook URL"):
        MSTeams("relative/path")


def test_factory():
    factory = NotifierFactory("https://hooks.example.com/x", "flagger", "general")
    assert isinstance(factory.notifier("slack"), Slack)
    assert isinstance(factory.notifier("msteams"), MSTeams)
    assert factory.notifier("other") is None