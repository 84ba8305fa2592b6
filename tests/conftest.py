"""
Core pytest configuration and fixtures for Chatbranch testing.

This module provides shared test fixtures, a scripted fake LLM, and helpers
for building conversation trees with deterministic timestamps.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from chatbranch.llm import LLM, GenerationCancelled
from chatbranch.models import (
    ASSISTANT_ROLE,
    USER_ROLE,
    ConversationTree,
    GenerationResult,
    Message,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ===== TEST UTILITIES =====


def at(seconds: int) -> datetime:
    """Deterministic timestamp ``seconds`` after a fixed base time."""
    return BASE_TIME + timedelta(seconds=seconds)


class ScriptedLLM(LLM):
    """A fake provider that streams scripted chunks.

    With ``hold=True`` it parks after streaming until ``release()`` is called
    or cancellation is signalled, so tests can inspect the mid-generation
    state of the engine.
    """

    def __init__(
        self,
        answer_chunks=("Final ", "answer"),
        thinking_chunks=(),
        final: Optional[str] = None,
        error: Optional[Exception] = None,
        hold: bool = False,
        ignore_cancel: bool = False,
        late_chunks=(),
    ):
        self.answer_chunks = list(answer_chunks)
        self.thinking_chunks = list(thinking_chunks)
        self.final = final
        self.error = error
        self.hold = hold
        self.ignore_cancel = ignore_cancel
        self.late_chunks = list(late_chunks)
        self.calls: List[list] = []
        self.waiting = False
        self._released = False
        self.on_answer = None

    def release(self):
        self._released = True

    async def generate(self, messages, config, cancel_event, on_thinking, on_answer):
        self.calls.append([dict(m) for m in messages])
        self.on_answer = on_answer
        thinking = ""
        for chunk in self.thinking_chunks:
            thinking += chunk
            on_thinking(thinking)
        answer = ""
        for chunk in self.answer_chunks:
            answer += chunk
            on_answer(answer)

        if self.hold:
            self.waiting = True
            while not self._released and not cancel_event.is_set():
                await asyncio.sleep(0.001)
            self.waiting = False

        for chunk in self.late_chunks:
            answer += chunk
            on_answer(answer)

        if cancel_event.is_set() and not self.ignore_cancel:
            raise GenerationCancelled()
        if self.error is not None:
            raise self.error
        content = self.final if self.final is not None else answer
        return GenerationResult(content=content, reasoning=thinking or None)


async def wait_for(predicate, attempts: int = 500):
    """Yields to the event loop until ``predicate()`` is true."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition was never met")


# ===== FIXTURES =====


@pytest.fixture
def branching_tree() -> ConversationTree:
    """A tree with three answers to one question, the middle one active.

    u1 -> a1 (t=1)
       -> a2 (t=2) -> u2 -> a3
       -> a4 (t=3) -> u3 (t=10) -> a5
                   -> u4 (t=11) -> a6
    """
    tree = ConversationTree()
    tree.add_message(Message(id="u1", role=USER_ROLE, content="Question", timestamp=at(0)))
    for message_id, seconds in (("a1", 1), ("a2", 2), ("a4", 3)):
        tree.add_message(
            Message(
                id=message_id,
                role=ASSISTANT_ROLE,
                content=f"Answer {message_id}",
                parent_id="u1",
                timestamp=at(seconds),
            )
        )
    tree.add_message(Message(id="u2", role=USER_ROLE, content="Follow up", parent_id="a2", timestamp=at(4)))
    tree.add_message(Message(id="a3", role=ASSISTANT_ROLE, content="Reply", parent_id="u2", timestamp=at(5)))
    tree.add_message(Message(id="u3", role=USER_ROLE, content="Older", parent_id="a4", timestamp=at(10)))
    tree.add_message(Message(id="a5", role=ASSISTANT_ROLE, content="Old reply", parent_id="u3", timestamp=at(12)))
    tree.add_message(Message(id="u4", role=USER_ROLE, content="Newer", parent_id="a4", timestamp=at(11)))
    tree.add_message(Message(id="a6", role=ASSISTANT_ROLE, content="New reply", parent_id="u4", timestamp=at(13)))
    tree.active_path = ["u1", "a2", "u2", "a3"]
    return tree


@pytest.fixture
def linear_tree() -> ConversationTree:
    """A two-turn conversation: u1 -> a1 -> u2 -> a2."""
    tree = ConversationTree()
    tree.add_message(Message(id="u1", role=USER_ROLE, content="Hello", timestamp=at(0)))
    tree.add_message(Message(id="a1", role=ASSISTANT_ROLE, content="Hi there", parent_id="u1", timestamp=at(1)))
    tree.add_message(Message(id="u2", role=USER_ROLE, content="How are you?", parent_id="a1", timestamp=at(2)))
    tree.add_message(Message(id="a2", role=ASSISTANT_ROLE, content="Fine", parent_id="u2", timestamp=at(3)))
    tree.active_path = ["u1", "a1", "u2", "a2"]
    return tree


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
