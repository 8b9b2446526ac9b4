import asyncio
import re
from dataclasses import dataclass
from typing import Awaitable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .messages import ThinkingSegment

T = TypeVar("T")

THINKING_HINT_KEYWORDS = (
    "reason", "think", "analysis", "chain", "deliberat", "scratchpad", "plan", "inner", "cot", "reflect",
)
THINKING_LABEL_ALIASES = {
    "cot": "Chain of Thought",
    "chain_of_thought": "Chain of Thought",
    "reasoning": "Reasoning",
    "reason": "Reasoning",
    "reasoning_content": "Reasoning",
    "analysis": "Analysis",
    "deliberate": "Deliberation",
    "deliberation": "Deliberation",
    "reflection": "Reflection",
    "scratchpad": "Scratchpad",
    "plan": "Plan",
    "inner_monologue": "Inner Monologue",
}


class RequestAborted(Exception):
    """Raised when a request is cancelled through its CancellationToken."""


class BackendError(RuntimeError):
    pass


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestAborted("Request was cancelled.")

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        The pending work is cancelled and ``RequestAborted`` raised as soon as
        ``cancel()`` is called, so a stalled network read does not delay a stop.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestAborted("Request was cancelled.")
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        # Drain the cancelled work.
        await asyncio.gather(work, return_exceptions=True)
        raise RequestAborted("Request was cancelled.")


@dataclass(frozen=True)
class ResponseSnapshot:
    """Cumulative view of a response so far. ``done`` marks the final one."""

    text: str
    thinking: Optional[Tuple[ThinkingSegment, ...]] = None
    done: bool = False


class CumulativeAccumulator:
    """Folds provider delta chunks into cumulative snapshots.

    Streaming providers emit deltas, while consumers of ResponseSnapshot
    replace text wholesale. Every adapter routes its chunks through here.
    """

    def __init__(self) -> None:
        self._text: List[str] = []
        self._thinking: Dict[str, List[str]] = {}

    def add_text(self, delta: Optional[str]) -> bool:
        if not delta:
            return False
        self._text.append(delta)
        return True

    def add_thinking(self, delta: Optional[str], hint: str = "thinking") -> bool:
        if not delta:
            return False
        self._thinking.setdefault(hint, []).append(delta)
        return True

    @property
    def text(self) -> str:
        return "".join(self._text)

    def thinking_segments(self) -> Tuple[ThinkingSegment, ...]:
        segments = [
            ThinkingSegment(text="".join(chunks), label=format_thinking_label(hint), kind=hint)
            for hint, chunks in self._thinking.items()
        ]
        return tuple(dedupe_thinking_segments(segments))

    def snapshot(self, done: bool = False) -> ResponseSnapshot:
        text = self.text.strip() if done else self.text
        return ResponseSnapshot(text=text, thinking=self.thinking_segments(), done=done)


def is_thinking_hint(value: Optional[str]) -> bool:
    if not value:
        return False
    normalized = value.lower()
    return any(keyword in normalized for keyword in THINKING_HINT_KEYWORDS)


def format_thinking_label(hint: Optional[str]) -> str:
    if not hint:
        return "Thinking"
    normalized_key = re.sub(r"[^a-z0-9]+", "_", hint.lower())
    if normalized_key in THINKING_LABEL_ALIASES:
        return THINKING_LABEL_ALIASES[normalized_key]
    cleaned = re.sub(r"[^a-zA-Z0-9_\s-]+", " ", hint).strip()
    if not cleaned:
        return "Thinking"
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[_\s-]+", cleaned) if word)


def dedupe_thinking_segments(segments: Iterable[ThinkingSegment]) -> List[ThinkingSegment]:
    seen = set()
    result: List[ThinkingSegment] = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        key = (segment.kind or "thinking", text)
        if key in seen:
            continue
        seen.add(key)
        result.append(ThinkingSegment(text=text, label=segment.label, kind=segment.kind))
    return result
