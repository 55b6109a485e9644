"""Conversation scope tracking via ContextVar.

Works across async boundaries. Terminal session names are derived from the
scope id, so two conversations sharing one sandbox never address the same
tmux session.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

_current_thread_id: ContextVar[str] = ContextVar("sandbox_thread_id", default="")


def set_current_thread_id(thread_id: str) -> Token[str]:
    """Set the scope id for the current context; returns a reset token."""
    return _current_thread_id.set(thread_id)


def get_current_thread_id() -> str | None:
    value = _current_thread_id.get()
    return value if value else None


@contextmanager
def thread_scope(thread_id: str) -> Iterator[str]:
    """Bind ``thread_id`` for the duration of the block."""
    token = _current_thread_id.set(thread_id)
    try:
        yield thread_id
    finally:
        _current_thread_id.reset(token)
