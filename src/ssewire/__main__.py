"""Entry point: python -m ssewire {serve,listen}"""

from __future__ import annotations

import argparse
import asyncio
import sys

from .config import StreamConfig
from .logging_config import setup_logging


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Server-sent events over HTTP")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs instead of JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the event-stream server")
    serve.add_argument("--host", default=None, help="Bind host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: 8080)")
    serve.add_argument("--retry-ms", type=int, default=None, help="Reconnection hint sent to clients")

    listen = sub.add_parser("listen", help="Print events from an SSE endpoint")
    listen.add_argument("url", help="Event stream URL")

    args = parser.parse_args(argv)

    config = StreamConfig()
    if args.log_level:
        config.log_level = args.log_level
    if args.console_logs:
        config.json_logs = False

    if args.command == "serve":
        if args.host:
            config.host = args.host
        if args.port:
            config.port = args.port
        if args.retry_ms is not None:
            config.retry_ms = args.retry_ms
        setup_logging(config.log_dir, config.log_level, config.json_logs)

        from .server.app import run_server
        run_server(config)
        return

    # listen: keep stdout for events, logs go to stderr only
    setup_logging(None, config.log_level, config.json_logs)
    try:
        asyncio.run(_listen(args.url, config))
    except KeyboardInterrupt:
        pass


async def _listen(url: str, config: StreamConfig) -> None:
    from .client.notifier import StreamNotifier
    from .errors import SSEError

    queue: asyncio.Queue = asyncio.Queue(maxsize=config.output_buffer)

    async def printer() -> None:
        while True:
            event = await queue.get()
            label = event.type or "message"
            suffix = f" id={event.id}" if event.id else ""
            print(f"[{label}{suffix}] {event.text}", flush=True)
            queue.task_done()

    printer_task = asyncio.create_task(printer())
    try:
        async with StreamNotifier(config) as notifier:
            await notifier.notify(url, queue)
        await queue.join()
    except SSEError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        printer_task.cancel()


if __name__ == "__main__":
    main()
