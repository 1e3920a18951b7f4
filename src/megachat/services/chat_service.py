from __future__ import annotations

import logging
from enum import Enum
from typing import AsyncIterator, Callable, Iterator, List, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from ..config import Settings, load_settings
from ..domain.chat_models import ChatTurn, StreamChunk
from ..infrastructure.message_store import MessageStore, get_message_store
from .generation import HuggingFaceClient, build_prompt
from .streaming import ClosedProbe, DEFAULT_POLICY, RelayPolicy, RelayResult, collect, relay


logger = logging.getLogger("megachat.chat")


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...

    def stream(self, prompt: str) -> Iterator[str]: ...


class DeliveryMode(str, Enum):
    REPLY = "reply"
    STREAM = "stream"


class ChatTurnService:
    """One chat turn: record the user message, generate, relay, record the reply."""

    def __init__(
        self,
        generator: TextGenerator,
        store: MessageStore,
        policy: RelayPolicy = DEFAULT_POLICY,
        history_turns: int = 0,
        upstream_streaming: bool = False,
    ) -> None:
        self.generator = generator
        self.store = store
        self.policy = policy
        self.history_turns = history_turns
        self.upstream_streaming = upstream_streaming

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        generator: Optional[TextGenerator] = None,
        store: Optional[MessageStore] = None,
    ) -> "ChatTurnService":
        return cls(
            generator=generator or HuggingFaceClient.from_settings(settings),
            store=store or get_message_store(),
            policy=RelayPolicy(chunk_size=settings.chunk_size, delay=settings.chunk_delay),
            history_turns=settings.history_turns,
            upstream_streaming=settings.upstream_streaming,
        )

    def _record(self, role: str, content: str, owner_id: str) -> None:
        try:
            self.store.record(role, content, owner_id)
        except Exception as exc:
            logger.warning("persist_failed", extra={"role": role, "owner_id": owner_id, "err": str(exc)})

    async def open_turn(self, owner_id: str, messages: List[ChatTurn]) -> str:
        """Persist the user's latest message and return the upstream prompt."""
        last = messages[-1]
        await run_in_threadpool(self._record, "user", last.content, owner_id)
        return build_prompt(messages, self.history_turns)

    def _source(self, prompt: str) -> Callable[[], object]:
        if self.upstream_streaming:
            return lambda: self.generator.stream(prompt)
        return lambda: self.generator.generate(prompt)

    def _completion_hook(self, owner_id: str) -> Callable[[str], None]:
        def remember(text: str) -> None:
            self._record("assistant", text, owner_id)

        return remember

    async def stream_turn(
        self,
        owner_id: str,
        messages: List[ChatTurn],
        is_closed: Optional[ClosedProbe] = None,
    ) -> AsyncIterator[StreamChunk]:
        prompt = await self.open_turn(owner_id, messages)
        async for chunk in relay(
            self._source(prompt),
            policy=self.policy,
            is_closed=is_closed,
            on_complete=self._completion_hook(owner_id),
        ):
            yield chunk

    async def reply_turn(self, owner_id: str, messages: List[ChatTurn]) -> RelayResult:
        prompt = await self.open_turn(owner_id, messages)
        # One-shot delivery never needs the upstream token stream
        return await collect(
            lambda: self.generator.generate(prompt),
            policy=self.policy,
            on_complete=self._completion_hook(owner_id),
        )


_service: ChatTurnService | None = None


def get_chat_service() -> ChatTurnService:
    global _service
    if _service is None:
        _service = ChatTurnService.from_settings(load_settings())
    return _service
