import asyncio

import pytest

from src.content_workspace.messages import ThinkingSegment
from src.content_workspace.streaming import (
    CancellationToken,
    CumulativeAccumulator,
    RequestAborted,
    dedupe_thinking_segments,
    format_thinking_label,
    is_thinking_hint,
)


def test_accumulator_turns_deltas_into_cumulative_snapshots():
    accumulator = CumulativeAccumulator()
    accumulator.add_text("Hel")
    first = accumulator.snapshot()
    accumulator.add_text("lo")
    second = accumulator.snapshot()

    assert first.text == "Hel"
    assert second.text == "Hello"
    assert second.done is False


def test_accumulator_groups_thinking_by_hint():
    accumulator = CumulativeAccumulator()
    assert accumulator.add_thinking("step one, ", "reasoning")
    assert accumulator.add_thinking("step two", "reasoning")
    assert accumulator.add_thinking("", "reasoning") is False
    accumulator.add_text("  Answer  ")

    final = accumulator.snapshot(done=True)
    assert final.text == "Answer"
    assert final.done is True
    assert final.thinking == (ThinkingSegment("step one, step two", label="Reasoning", kind="reasoning"),)


def test_thinking_labels_and_hints():
    assert format_thinking_label("cot") == "Chain of Thought"
    assert format_thinking_label("inner-monologue") == "Inner Monologue"
    assert format_thinking_label("draft_notes") == "Draft Notes"
    assert format_thinking_label(None) == "Thinking"
    assert is_thinking_hint("reasoning_content") is True
    assert is_thinking_hint("output_text") is False


def test_dedupe_drops_blank_and_repeated_segments():
    segments = [
        ThinkingSegment(" idea ", kind="analysis"),
        ThinkingSegment("idea", kind="analysis"),
        ThinkingSegment("idea", kind="plan"),
        ThinkingSegment("   "),
    ]
    assert dedupe_thinking_segments(segments) == [
        ThinkingSegment("idea", kind="analysis"),
        ThinkingSegment("idea", kind="plan"),
    ]


def test_cancellation_token_raises_request_aborted():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled is True
    with pytest.raises(RequestAborted):
        token.raise_if_cancelled()


def test_race_returns_the_result_when_not_cancelled():
    async def run():
        token = CancellationToken()

        async def work():
            await asyncio.sleep(0)
            return "done"

        return await token.race(work())

    assert asyncio.run(run()) == "done"


def test_race_abandons_pending_work_on_cancel():
    async def run():
        token = CancellationToken()
        state = {"cancelled": False}

        async def never_finishes():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(RequestAborted):
            await token.race(never_finishes())
        return state["cancelled"]

    assert asyncio.run(run()) is True


def test_race_on_cancelled_token_never_starts_the_work():
    async def run():
        token = CancellationToken()
        token.cancel()
        started = []

        async def work():
            started.append(True)

        with pytest.raises(RequestAborted):
            await token.race(work())
        return started

    assert asyncio.run(run()) == []
