"""Canary event notifications for Slack and Microsoft Teams incoming webhooks."""

from __future__ import annotations

import json
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Iterable

POST_TIMEOUT = 5.0

_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*")


class NotifierError(Exception):
    """Raised when a notifier is misconfigured or a message cannot be delivered."""


@dataclass(frozen=True)
class Field:
    """A name/value pair shown alongside a notification."""

    name: str
    value: str


def post_message(address: str, payload: Any) -> None:
    """POST ``payload`` as JSON to ``address``; raise NotifierError unless the reply is 200."""
    try:
        data = json.dumps(payload).encode()
    except (TypeError, ValueError) as exc:
        raise NotifierError(f"marshalling notification payload failed {exc}") from exc

    try:
        request = urllib.request.Request(
            address,
            data=data,
            method="POST",
            headers={"Content-type": "application/json"},
        )
        with urllib.request.urlopen(request, timeout=POST_TIMEOUT) as response:
            status = response.status
            body = response.read()
    except urllib.error.HTTPError as exc:
        text = exc.read().decode(errors="replace")
        raise NotifierError(f"sending notification failed {text}") from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise NotifierError(f"sending notification failed {exc}") from exc

    if status != 200:
        raise NotifierError(f"sending notification failed {body.decode(errors='replace')}")


def _is_request_uri(value: str) -> bool:
    if not value or any(ord(c) < 0x20 or ord(c) == 0x7F for c in value):
        return False
    if value.startswith("/") or value == "*":
        return True
    scheme, sep, _ = value.partition(":")
    return bool(sep) and _SCHEME.fullmatch(scheme) is not None


def _fields(fields: Iterable[Field] | None) -> list[Field]:
    return list(fields or ())


class Slack:
    """Posts canary events to a Slack incoming webhook."""

    def __init__(self, hook_url: str, username: str, channel: str) -> None:
        if not _is_request_uri(hook_url):
            raise NotifierError(f"invalid Slack hook URL {hook_url}")
        if not username:
            raise NotifierError("empty Slack username")
        if not channel:
            raise NotifierError("empty Slack channel")
        self.url = hook_url
        self.username = username
        self.channel = channel
        self.icon_emoji = ":rocket:"

    def payload(
        self,
        workload: str,
        namespace: str,
        message: str,
        fields: Iterable[Field] | None,
        warn: bool,
    ) -> dict[str, Any]:
        """The JSON document sent to the webhook."""
        attachment = {
            "color": "danger" if warn else "good",
            "author_name": f"{workload}.{namespace}",
            "text": message,
            "mrkdwn_in": ["text"],
            "fields": [
                {"title": f.name, "value": f.value, "short": False} for f in _fields(fields)
            ],
        }
        return {
            "channel": self.channel,
            "username": self.username,
            "icon_url": "",
            "icon_emoji": "",
            "attachments": [attachment],
        }

    def post(
        self,
        workload: str,
        namespace: str,
        message: str,
        fields: Iterable[Field] | None,
        warn: bool,
    ) -> None:
        """Send the message to Slack."""
        post_message(self.url, self.payload(workload, namespace, message, fields, warn))


class MSTeams:
    """Posts canary events to a Microsoft Teams incoming webhook."""

    def __init__(self, hook_url: str) -> None:
        if not _is_request_uri(hook_url):
            raise NotifierError(f"invalid MS Teams webhook URL {hook_url}")
        self.url = hook_url

    def payload(
        self,
        workload: str,
        namespace: str,
        message: str,
        fields: Iterable[Field] | None,
        warn: bool,
    ) -> dict[str, Any]:
        """The message card sent to the webhook."""
        subject = f"{workload}.{namespace}"
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": "FF0000" if warn else "0076D7",
            "summary": subject,
            "sections": [
                {
                    "activityTitle": message,
                    "activitySubtitle": subject,
                    "facts": [{"name": f.name, "value": f.value} for f in _fields(fields)],
                }
            ],
        }

    def post(
        self,
        workload: str,
        namespace: str,
        message: str,
        fields: Iterable[Field] | None,
        warn: bool,
    ) -> None:
        """Send the message card to Teams."""
        post_message(self.url, self.payload(workload, namespace, message, fields, warn))


class NotifierFactory:
    """Builds the notifier for a provider name."""

    def __init__(self, url: str, username: str, channel: str) -> None:
        self.url = url
        self.username = username
        self.channel = channel

    def notifier(self, provider: str) -> Slack | MSTeams | None:
        """Return a notifier for ``slack`` or ``msteams``; None for anything else."""
        if provider == "slack":
            return Slack(self.url, self.username, self.channel)
        if provider == "msteams":
            return MSTeams(self.url)
        return None