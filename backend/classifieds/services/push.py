from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import httpx

from ..config import settings
from ..errors import NotificationError

logger = logging.getLogger(__name__)

EXPO_CHUNK_SIZE = 100
_EXPO_TOKEN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")
_UUID_TOKEN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: object) -> bool:
    if not isinstance(token, str):
        return False
    return bool(_EXPO_TOKEN.match(token) or _UUID_TOKEN.match(token))


@dataclass(frozen=True)
class PushMessage:
    to: str
    title: str
    body: str
    sound: str = "default"

    def as_payload(self) -> dict[str, Any]:
        return {"to": self.to, "sound": self.sound, "title": self.title, "body": self.body}


class PushGateway:
    def is_valid_token(self, token: object) -> bool:
        return is_expo_push_token(token)

    def send_batch(self, messages: list[PushMessage]) -> list[dict[str, Any]]:
        raise NotImplementedError


class InMemoryPushGateway(PushGateway):
    def __init__(self) -> None:
        self.batches: list[list[PushMessage]] = []

    def reset(self) -> None:
        self.batches.clear()

    @property
    def sent(self) -> list[PushMessage]:
        return [m for batch in self.batches for m in batch]

    def send_batch(self, messages: list[PushMessage]) -> list[dict[str, Any]]:
        self.batches.append(list(messages))
        return [{"status": "ok", "id": str(uuid4())} for _ in messages]


class ExpoPushGateway(PushGateway):
    def __init__(
        self,
        url: str,
        access_token: str = "",
        timeout: float = 10,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send_batch(self, messages: list[PushMessage]) -> list[dict[str, Any]]:
        tickets: list[dict[str, Any]] = []
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                for start in range(0, len(messages), EXPO_CHUNK_SIZE):
                    chunk = messages[start:start + EXPO_CHUNK_SIZE]
                    resp = client.post(self.url, json=[m.as_payload() for m in chunk], headers=self._headers())
                    resp.raise_for_status()
                    tickets.extend(resp.json().get("data", []))
        except (httpx.HTTPError, ValueError) as exc:
            raise NotificationError(f"expo push failed: {exc}") from exc
        failed = [t for t in tickets if t.get("status") == "error"]
        if failed:
            logger.warning("expo rejected %d of %d messages", len(failed), len(tickets))
        return tickets


def get_push_gateway() -> PushGateway:
    if settings.push_backend == "expo":
        return ExpoPushGateway(settings.expo_push_url, settings.expo_access_token, settings.push_timeout_sec)
    return InMemoryPushGateway()
