import asyncio

import pytest

from shell_sessions.events import EventBus, EventType
from shell_sessions.pump import OutputPump, StderrDrain
from shell_sessions.session import ShellSession

from conftest import FakeProcess, collect_until_exit, next_event


def make_pump(stream, *, returncode=0, **kwargs):
    process = FakeProcess(stdout=stream, returncode=returncode)
    session = ShellSession(session_id="s1", process=process, command="/bin/sh")
    bus = EventBus()
    q = bus.subscribe()
    return OutputPump(session, bus, **kwargs), process, q


@pytest.mark.asyncio
async def test_complete_lines_become_ordered_output_then_exit():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    stream.feed_data(b"one\ntwo\r\nthree\n")
    stream.feed_eof()
    process.finish(0)

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_OUTPUT] * 3 + [EventType.SHELL_EXIT]
    assert [e.data["output"] for e in events[:3]] == ["one", "two", "three"]
    assert events[-1].payload == {"session_id": "s1", "exit_status": 0}
    assert pump.session.exit_status == 0
    assert pump.session.exited is True


@pytest.mark.asyncio
async def test_empty_lines_are_records():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    stream.feed_data(b"\n\n")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.data.get("output") for e in events[:-1]] == ["", ""]


@pytest.mark.asyncio
async def test_partial_trailing_line_is_flushed_by_default():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    stream.feed_data(b"done\nprompt$ ")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.data.get("output") for e in events[:-1]] == ["done", "prompt$ "]


@pytest.mark.asyncio
async def test_partial_trailing_line_can_be_dropped():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream, flush_partial_line=False)
    stream.feed_data(b"done\nprompt$ ")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_OUTPUT, EventType.SHELL_EXIT]
    assert events[0].data["output"] == "done"


@pytest.mark.asyncio
async def test_read_error_emits_one_error_then_exit():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream, returncode=1)
    task = asyncio.create_task(pump.run())

    stream.feed_data(b"before\n")
    first = await next_event(q, "s1")
    assert first.type is EventType.SHELL_OUTPUT
    assert first.data["output"] == "before"

    stream.set_exception(OSError("pipe exploded"))
    stream.feed_data(b"after\n")
    process.finish()
    await task

    rest = await collect_until_exit(q, "s1")
    assert [e.type for e in rest] == [EventType.SHELL_ERROR, EventType.SHELL_EXIT]
    assert "pipe exploded" in rest[0].data["error"]
    assert rest[1].data["exit_status"] == 1
    assert q.empty()


@pytest.mark.asyncio
async def test_record_longer_than_stream_limit_is_delivered_whole():
    stream = asyncio.StreamReader(limit=8)
    pump, process, q = make_pump(stream)
    stream.feed_data(b"x" * 64 + b"\nnext\n")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_OUTPUT] * 2 + [EventType.SHELL_EXIT]
    assert [e.data["output"] for e in events[:2]] == ["x" * 64, "next"]


@pytest.mark.asyncio
async def test_record_split_across_reads_is_one_event():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    task = asyncio.create_task(pump.run())

    stream.feed_data(b"hel")
    await asyncio.sleep(0.01)
    stream.feed_data(b"lo\nwor")
    stream.feed_data(b"ld\n")
    stream.feed_eof()
    process.finish()
    await task

    events = await collect_until_exit(q, "s1")
    assert [e.data.get("output") for e in events[:-1]] == ["hello", "world"]


@pytest.mark.asyncio
async def test_unknown_error_handler_reports_error_and_still_exits():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream, errors="no-such-handler")
    stream.feed_data(b"ok\n\xff\nnever\n")
    stream.feed_eof()
    process.finish(2)

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_OUTPUT, EventType.SHELL_ERROR, EventType.SHELL_EXIT]
    assert events[-1].data["exit_status"] == 2


@pytest.mark.asyncio
async def test_unexpected_reader_failure_still_emits_exit():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    stream.set_exception(RuntimeError("reader broke"))
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_ERROR, EventType.SHELL_EXIT]
    assert "reader broke" in events[0].data["error"]
    assert pump.session.exited is True


@pytest.mark.asyncio
async def test_strict_decoding_reports_invalid_bytes():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream, errors="strict")
    stream.feed_data(b"ok\n\xff\xfe\nnever\n")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.type for e in events] == [EventType.SHELL_OUTPUT, EventType.SHELL_ERROR, EventType.SHELL_EXIT]
    assert events[0].data["output"] == "ok"


@pytest.mark.asyncio
async def test_replace_decoding_keeps_going():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream)
    stream.feed_data(b"\xff\nnext\n")
    stream.feed_eof()
    process.finish()

    await pump.run()
    events = await collect_until_exit(q, "s1")

    assert [e.data.get("output") for e in events[:-1]] == ["\ufffd", "next"]


@pytest.mark.asyncio
async def test_signalled_process_has_no_exit_status():
    stream = asyncio.StreamReader()
    pump, process, q = make_pump(stream, returncode=-9)
    stream.feed_eof()
    process.finish()

    assert await pump.run() is None
    event = await next_event(q, "s1")
    assert event.type is EventType.SHELL_EXIT
    assert event.data["exit_status"] is None


@pytest.mark.asyncio
async def test_exit_callback_runs_after_exit_event():
    stream = asyncio.StreamReader()
    seen = []

    async def on_exit(session):
        seen.append((session.session_id, q.qsize()))

    pump, process, q = make_pump(stream, on_exit=on_exit)
    stream.feed_eof()
    process.finish()

    await pump.run()

    assert seen == [("s1", 1)]


@pytest.mark.asyncio
async def test_stderr_drain_writes_log(tmp_path):
    stderr = asyncio.StreamReader()
    process = FakeProcess()
    process.stderr = stderr
    session = ShellSession(session_id="odd/id", process=process, command="/bin/sh")
    drain = StderrDrain(session, log_dir=tmp_path / "logs")

    stderr.feed_data(b"warning: something\n")
    stderr.feed_eof()
    await drain.run()

    assert drain.log_path.parent == tmp_path / "logs"
    assert drain.log_path.name.startswith("odd_id-")
    assert drain.log_path.name.endswith(".stderr.log")
    assert drain.log_path.read_bytes() == b"warning: something\n"


def test_stderr_log_names_do_not_collide(tmp_path):
    def log_path(session_id):
        session = ShellSession(session_id=session_id, process=FakeProcess(), command="/bin/sh")
        return StderrDrain(session, log_dir=tmp_path).log_path

    assert log_path("plain-id.1") == tmp_path / "plain-id.1.stderr.log"
    names = {log_path(i) for i in ("a/b", "a:b", "a_b", "", "/")}
    assert len(names) == 5


@pytest.mark.asyncio
async def test_stderr_drain_keeps_draining_when_log_cannot_open(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    stderr = asyncio.StreamReader()
    process = FakeProcess()
    process.stderr = stderr
    session = ShellSession(session_id="s1", process=process, command="/bin/sh")
    drain = StderrDrain(session, log_dir=blocker / "logs")

    stderr.feed_data(b"noise\n" * 100)
    stderr.feed_eof()
    with caplog.at_level("WARNING", logger="shell_sessions.pump"):
        await drain.run()

    assert stderr.at_eof()
    assert "cannot open stderr log" in caplog.text


@pytest.mark.asyncio
async def test_stderr_drain_without_log_dir_just_consumes():
    stderr = asyncio.StreamReader()
    process = FakeProcess()
    process.stderr = stderr
    session = ShellSession(session_id="s1", process=process, command="/bin/sh")
    drain = StderrDrain(session)

    stderr.feed_data(b"noise\n" * 100)
    stderr.feed_eof()
    await drain.run()

    assert drain.log_path is None
    assert stderr.at_eof()
