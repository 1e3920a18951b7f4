from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional

from src.megachat.domain.chat_models import StoredMessage
from src.megachat.domain.errors import PersistenceFailure, UpstreamUnavailable


class StubGenerator:
    """Generation collaborator returning canned text or fragments."""

    def __init__(
        self,
        text: str = "",
        fragments: Optional[List[str]] = None,
        fail: bool = False,
        fail_after: Optional[int] = None,
    ) -> None:
        self.text = text
        self.fragments = fragments or []
        self.fail = fail
        self.fail_after = fail_after
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise UpstreamUnavailable("backend down")
        return self.text

    def stream(self, prompt: str) -> Iterator[str]:
        self.prompts.append(prompt)
        for idx, fragment in enumerate(self.fragments):
            if self.fail_after is not None and idx >= self.fail_after:
                raise UpstreamUnavailable("stream dropped")
            yield fragment


class RecordingStore:
    def __init__(self, fail_roles: tuple = ()) -> None:
        self.calls: List[Dict[str, str]] = []
        self.fail_roles = fail_roles

    def record(self, role: str, content: str, owner_id: str) -> StoredMessage:
        self.calls.append({"role": role, "content": content, "owner_id": owner_id})
        if role in self.fail_roles:
            raise PersistenceFailure("db offline")
        return StoredMessage(
            message_id=str(len(self.calls)),
            owner_id=owner_id,
            role=role,
            content=content,
            created_at="2026-01-01T00:00:00Z",
        )

    def roles(self) -> List[str]:
        return [c["role"] for c in self.calls]


def parse_sse(body: str) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events
