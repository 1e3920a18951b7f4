"""Chunked relay of generated text to a connected client.

``relay`` turns either a finished reply or an incremental token stream into an
ordered run of :class:`StreamChunk` events that always ends with exactly one
``done`` chunk, even when the upstream generation fails part way through.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Union

from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from ..domain.chat_models import StreamChunk
from ..domain.errors import UpstreamUnavailable
from ..observability.metrics import RELAY_SESSIONS


LOG = logging.getLogger("megachat.relay")

FALLBACK_REPLY = "🤖 Model API error"

TextSource = Union[str, Iterable[str], AsyncIterable[str], Callable[[], Any]]
ClosedProbe = Callable[[], Awaitable[bool]]
CompletionHook = Callable[[str], Any]


@dataclass(frozen=True)
class RelayPolicy:
    chunk_size: int = 30
    delay: float = 0.04
    placeholder: str = FALLBACK_REPLY

    def without_delay(self) -> "RelayPolicy":
        return replace(self, delay=0.0)


DEFAULT_POLICY = RelayPolicy()


@dataclass(frozen=True)
class RelayResult:
    text: str
    ok: bool


def segment_text(text: str, size: int) -> List[str]:
    size = max(1, int(size))
    return [text[idx : idx + size] for idx in range(0, len(text), size)]


def iter_as_async(it: Iterable[str]) -> AsyncIterator[str]:
    # Blocking iterables (e.g. a requests response) are drained off the event loop
    return iterate_in_threadpool(iter(it))


async def _paced(chunks: List[str], delay: float) -> AsyncIterator[str]:
    for idx, chunk in enumerate(chunks):
        if idx and delay > 0:
            await asyncio.sleep(delay)
        yield chunk


async def _resolve(source: TextSource) -> Any:
    if callable(source):
        if inspect.iscoroutinefunction(source):
            value = await source()
        else:
            value = await run_in_threadpool(source)
    else:
        value = source
    if inspect.isawaitable(value):
        value = await value
    return value


async def _sink_closed(is_closed: Optional[ClosedProbe]) -> bool:
    if is_closed is None:
        return False
    try:
        return bool(await is_closed())
    except Exception:
        LOG.debug("relay_close_probe_failed", exc_info=True)
        return False


async def _finish(on_complete: Optional[CompletionHook], text: str) -> None:
    if on_complete is None:
        return
    try:
        if inspect.iscoroutinefunction(on_complete):
            await on_complete(text)
        else:
            result = await run_in_threadpool(on_complete, text)
            if inspect.isawaitable(result):
                await result
    except Exception as exc:
        LOG.warning("relay_on_complete_failed", extra={"err": str(exc)})


async def _close_upstream(upstream: Any) -> None:
    try:
        if hasattr(upstream, "aclose"):
            await upstream.aclose()
        elif hasattr(upstream, "close"):
            upstream.close()
    except Exception:
        LOG.debug("relay_upstream_close_failed", exc_info=True)


async def relay(
    source: TextSource,
    *,
    policy: RelayPolicy = DEFAULT_POLICY,
    is_closed: Optional[ClosedProbe] = None,
    on_complete: Optional[CompletionHook] = None,
) -> AsyncIterator[StreamChunk]:
    """Yield the chunks for one relay session.

    A complete string is re-segmented into ``policy.chunk_size`` pieces paced by
    ``policy.delay``; an iterable is forwarded fragment by fragment as received.
    ``on_complete`` receives the assembled text once, after the last content
    chunk and only when generation succeeded. When ``is_closed`` reports the
    sink gone the session stops without emitting anything further.
    """
    outcome = "closed"
    upstream: Any = None
    pieces: List[str] = []
    try:
        try:
            value = await _resolve(source)
            if isinstance(value, str):
                if not value:
                    raise UpstreamUnavailable("empty generation")
                fragments = _paced(segment_text(value, policy.chunk_size), policy.delay)
            elif isinstance(value, AsyncIterable):
                upstream = value
                fragments = value.__aiter__()
            elif isinstance(value, Iterable):
                upstream = value
                fragments = iter_as_async(value)
            else:
                raise UpstreamUnavailable(f"unsupported generation payload: {type(value).__name__}")

            async for piece in fragments:
                if not piece:
                    continue
                if await _sink_closed(is_closed):
                    LOG.info("relay_sink_closed", extra={"emitted": len(pieces)})
                    return
                pieces.append(piece)
                yield StreamChunk.text(piece)

            if not pieces:
                raise UpstreamUnavailable("empty generation")
        except Exception as exc:
            outcome = "failed"
            LOG.warning(
                "relay_upstream_failed",
                extra={"err": str(exc), "emitted": len(pieces)},
            )
            if await _sink_closed(is_closed):
                outcome = "closed"
                return
            yield StreamChunk.text(policy.placeholder, fallback=True)
            yield StreamChunk.finished()
            return

        if await _sink_closed(is_closed):
            LOG.info("relay_sink_closed_before_persist", extra={"emitted": len(pieces)})
            return
        await _finish(on_complete, "".join(pieces))
        outcome = "completed"
        yield StreamChunk.finished()
    finally:
        if upstream is not None:
            await _close_upstream(upstream)
        RELAY_SESSIONS.labels(outcome=outcome).inc()


async def collect(
    source: TextSource,
    *,
    policy: RelayPolicy = DEFAULT_POLICY,
    on_complete: Optional[CompletionHook] = None,
) -> RelayResult:
    """Drive :func:`relay` without pacing and join its tokens into one reply."""
    parts: List[str] = []
    ok = True
    async for chunk in relay(source, policy=policy.without_delay(), on_complete=on_complete):
        if chunk.done:
            continue
        if chunk.fallback:
            ok = False
        parts.append(chunk.token or "")
    if not ok:
        return RelayResult(text=policy.placeholder, ok=False)
    return RelayResult(text="".join(parts), ok=True)
