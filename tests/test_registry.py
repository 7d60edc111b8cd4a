import pytest

from shell_sessions.registry import SessionRegistry
from shell_sessions.session import ShellSession

from conftest import FakeProcess


def make_session(session_id: str) -> ShellSession:
    return ShellSession(session_id=session_id, process=FakeProcess(), command="/bin/sh")


@pytest.mark.asyncio
async def test_register_if_absent_only_inserts_once():
    registry = SessionRegistry()
    first, second = make_session("a"), make_session("a")

    assert registry.register_if_absent("a", first) is True
    assert registry.register_if_absent("a", second) is False
    assert registry.lookup("a") is first
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_lookup_unknown_returns_none():
    assert SessionRegistry().lookup("missing") is None


@pytest.mark.asyncio
async def test_remove_returns_entry_once():
    registry = SessionRegistry()
    session = make_session("a")
    registry.register_if_absent("a", session)

    assert registry.remove("a") is session
    assert registry.remove("a") is None
    assert "a" not in registry


@pytest.mark.asyncio
async def test_discard_ignores_newer_session_under_same_id():
    registry = SessionRegistry()
    old, new = make_session("a"), make_session("a")
    registry.register_if_absent("a", old)
    registry.remove("a")
    registry.register_if_absent("a", new)

    assert registry.discard("a", old) is False
    assert registry.lookup("a") is new
    assert registry.discard("a", new) is True
    assert registry.lookup("a") is None


@pytest.mark.asyncio
async def test_distinct_ids_are_independent():
    registry = SessionRegistry()
    a, b = make_session("a"), make_session("b")
    assert registry.register_if_absent("a", a)
    assert registry.register_if_absent("b", b)

    registry.remove("a")

    assert registry.lookup("b") is b
    assert registry.ids() == ["b"]
    assert registry.sessions() == [b]
    assert list(registry) == ["b"]
