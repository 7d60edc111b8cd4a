import argparse
import asyncio
import logging
import shlex
import sys
import threading
import uuid
from typing import Optional

from ..config import SessionSettings, load_settings
from ..errors import ConfigError, SpawnError
from ..events import EventType
from ..manager import ShellSessionManager


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _pump_stdin(loop: asyncio.AbstractEventLoop, lines: "asyncio.Queue[Optional[str]]") -> None:
    # Daemon thread: a blocked readline must not keep the process alive.
    for line in sys.stdin:
        loop.call_soon_threadsafe(lines.put_nowait, line)
    loop.call_soon_threadsafe(lines.put_nowait, None)


async def _forward_input(manager: ShellSessionManager, session_id: str) -> None:
    loop = asyncio.get_running_loop()
    lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
    threading.Thread(target=_pump_stdin, args=(loop, lines), daemon=True).start()
    while True:
        line = await lines.get()
        if line is None:
            # Local EOF: ask the shell to leave on its own so pending output drains.
            await manager.send(session_id, "exit\n")
            return
        await manager.send(session_id, line)


async def run_session(manager: ShellSessionManager, session_id: str) -> int:
    events = manager.events.subscribe()
    try:
        await manager.start(session_id)
        forwarder = asyncio.create_task(_forward_input(manager, session_id))
        try:
            while True:
                event = await events.get()
                if event.session_id != session_id:
                    continue
                if event.type is EventType.SHELL_OUTPUT:
                    print(event.data["output"], flush=True)
                elif event.type is EventType.SHELL_ERROR:
                    print(f"[shell-error] {event.data['error']}", file=sys.stderr, flush=True)
                elif event.type is EventType.SHELL_EXIT:
                    status = event.data.get("exit_status")
                    return 1 if status is None else int(status)
        finally:
            forwarder.cancel()
            await manager.close_all()
    finally:
        manager.events.unsubscribe(events)


def _serve(settings: SessionSettings, host: str, port: int, log_level: str) -> None:
    import uvicorn

    from ..api.app import create_app

    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=log_level.lower())


def main(argv=None):
    parser = argparse.ArgumentParser(description="Shell Sessions CLI")
    parser.add_argument("--config", default=None, help="YAML settings file")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # shell-sessions resolve
    subparsers.add_parser("resolve", help="Print the shell that would be launched")

    # shell-sessions run
    run_parser = subparsers.add_parser("run", help="Attach this terminal to a new shell session")
    run_parser.add_argument("--session-id", default=None, help="Session id (default: random)")

    # shell-sessions serve
    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP/WebSocket API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8765, help="Port (default: 8765)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.log_level)

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)

    manager = ShellSessionManager(settings=settings)

    if args.command == "resolve":
        command, shell_args = manager.resolve_command()
        print(" ".join(shlex.quote(part) for part in [command, *shell_args]))
        return

    if args.command == "serve":
        _serve(settings, args.host, args.port, args.log_level)
        return

    if args.command == "run":
        session_id = args.session_id or uuid.uuid4().hex[:8]
        try:
            code = asyncio.run(run_session(manager, session_id))
        except SpawnError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(127)
        except KeyboardInterrupt:
            code = 130
        sys.exit(code)


if __name__ == "__main__":
    main()
