"""CLI entrypoint: long-poll `getUpdates` and print one line per update."""

from __future__ import annotations

import argparse
import logging
import re
import signal
import sys
from pathlib import Path
from typing import Final

import anyio
import anyio.to_thread as to_thread
import logfire
from pydantic import SecretStr
from rich import print

from .client import BotClient
from .config import Settings
from .errors import ErrorReport
from .state import load_offset, save_offset
from .types import Update, UpdateType

_LIST_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"[,\s]+")

logger = logging.getLogger(__name__)


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="balebot",
        description="Long-poll getUpdates and print received updates.",
    )
    parser.add_argument(
        "--token",
        default="",
        help="Bot token (never printed). Defaults to $BALEBOT_TOKEN.",
    )
    parser.add_argument(
        "--api-base-url",
        default="",
        help="Bot API base URL. Defaults to $BALEBOT_API_BASE_URL.",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=int,
        default=None,
        help="getUpdates long-poll timeout seconds.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum updates per getUpdates call (1-100).",
    )
    parser.add_argument(
        "--allowed-updates",
        default="",
        help="Optional comma/space separated update types, e.g. message,inline_query.",
    )
    parser.add_argument(
        "--offset-state-path",
        default="",
        help=(
            "Optional JSON path. The committed offset is loaded from it at start "
            "and saved after every dispatched batch."
        ),
    )
    parser.add_argument(
        "--delete-webhook",
        action="store_true",
        help="Call deleteWebhook before polling.",
    )
    return parser.parse_args(argv)


def _parse_allowed_updates(raw: str) -> list[UpdateType] | None:
    raw = raw.strip()
    if not raw:
        return None
    parts = [p for p in _LIST_SPLIT_RE.split(raw) if p]
    try:
        return [UpdateType(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Invalid update type in: {raw!r}") from e


def _build_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.token:
        overrides["token"] = SecretStr(args.token)
    if args.api_base_url:
        overrides["api_base_url"] = args.api_base_url
    if args.timeout_seconds is not None:
        overrides["poll_timeout_seconds"] = args.timeout_seconds
    if args.limit is not None:
        overrides["poll_limit"] = args.limit
    allowed = _parse_allowed_updates(args.allowed_updates)
    if allowed is not None:
        overrides["allowed_updates"] = allowed
    return Settings(**overrides)  # type: ignore[arg-type]


def format_update_line(update: Update) -> str:
    kind = update.type
    payload = update.payload
    text = ""
    if payload is not None:
        text = (
            getattr(payload, "text", None)
            or getattr(payload, "caption", None)
            or getattr(payload, "query", None)
            or getattr(payload, "data", None)
            or ""
        )
    line = f"update_id={update.update_id} type={kind.value}"
    if text:
        line += f" text={text!r}"
    return line


async def _stop_on_signals(client: BotClient) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("received signal %s, stopping", signum)
            client.stop()
            return


async def run(
    *,
    settings: Settings,
    offset_state_path: Path | None = None,
    delete_webhook: bool = False,
) -> int:
    """Function entrypoint. Returns the process exit code."""

    try:
        start_offset = load_offset(offset_state_path) if offset_state_path else None
    except ValueError as e:
        print(f"[red]invalid offset state[/red]: {e}")
        return 2
    client = BotClient.from_settings(settings)

    @client.on_update
    def _print_update(update: Update) -> None:
        print("[cyan]update[/cyan] " + format_update_line(update))

    @client.on_error
    def _print_error(report: ErrorReport) -> None:
        kind, message, is_fatal = report
        color = "red" if is_fatal else "yellow"
        print(f"[{color}]{kind.value}[/{color}] {message}")

    if offset_state_path is not None:

        @client.on_commit
        async def _persist_offset(offset: int) -> None:
            await to_thread.run_sync(save_offset, offset_state_path, offset)

    if delete_webhook:
        await client.api.delete_webhook()

    configuration = settings.to_polling_configuration(start_offset=start_offset)
    print(
        "\n".join(
            [
                "balebot polling getUpdates.",
                f"- api_base_url: {settings.api_base_url}",
                f"- timeout_seconds: {configuration.timeout_seconds}",
                f"- limit: {configuration.limit}",
                f"- allowed_updates: {settings.allowed_updates or None}",
                f"- start_offset: {start_offset}",
                f"- offset_state_path: {offset_state_path}",
            ]
        )
    )

    async with anyio.create_task_group() as tg:
        client.start(tg, configuration)
        tg.start_soon(_stop_on_signals, client)
        await client.wait_stopped()
        tg.cancel_scope.cancel()

    if client.last_fatal_error is not None:
        return 1
    return 0


async def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    args = _parse_cli_args(argv)

    logfire.configure(send_to_logfire="if-token-present")
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])

    try:
        settings = _build_settings(args)
    except ValueError as e:
        print(f"[red]invalid settings[/red]: {e}")
        return 2

    store_path: Path | None
    raw_store_path = str(args.offset_state_path).strip()
    store_path = Path(raw_store_path).expanduser() if raw_store_path else None

    return await run(
        settings=settings,
        offset_state_path=store_path,
        delete_webhook=args.delete_webhook,
    )


def cli() -> None:
    sys.exit(anyio.run(main))
