"""Command-line entry point for reach-inbox."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import uvicorn

from reach_inbox.core import AppSettings, ServiceContainer, configure_logging, load_app_settings
from reach_inbox.core.logging import mask_secret
from reach_inbox.core.models import HIGH_VALUE_CATEGORIES
from reach_inbox.ingestion import MessageNormalizer
from reach_inbox.intelligence import ClassificationOrchestrator, ReplySuggester, build_providers
from reach_inbox.notify import build_notifier
from reach_inbox.storage import MailCache, QueryService
from reach_inbox.sync import SyncSupervisor
from reach_inbox.transport import MailboxConnection
from reach_inbox.web import create_app


def build_container(settings: AppSettings) -> ServiceContainer:
    """Wire every long-lived service once."""
    container = ServiceContainer()
    container.register_instance("settings", settings)
    container.register("cache", lambda _: MailCache())
    container.register(
        "query", lambda c: QueryService(c.resolve("cache"))
    )
    container.register(
        "orchestrator",
        lambda c: ClassificationOrchestrator.from_settings(
            settings.classification, build_providers(settings)
        ),
    )
    container.register("notifier", lambda _: build_notifier(settings.notify))
    container.register("replies", lambda c: ReplySuggester(c.resolve("orchestrator")))
    container.register(
        "supervisor",
        lambda c: SyncSupervisor(
            settings.build_accounts(),
            connection_factory=lambda account: MailboxConnection(account, settings.imap),
            cache=c.resolve("cache"),
            orchestrator=c.resolve("orchestrator"),
            normalizer=MessageNormalizer(),
            notifier=c.resolve("notifier"),
            query_service=c.resolve("query"),
            settings=settings.sync,
            fetch_limit=settings.imap.fetch_limit,
        ),
    )
    return container


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every subcommand."""
    parser = argparse.ArgumentParser(description="reach-inbox mailbox categoriser")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Optional .env file with REACH_INBOX_* settings.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "sync", "run", "serve", "providers", "suggest"],
        help="Operation to execute.",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit code."""
    container = build_container(settings)
    command = args.command
    if command == "info":
        _print_info(settings)
    elif command == "providers":
        _print_providers(container)
    elif command == "sync":
        asyncio.run(_run_sync(container))
    elif command == "run":
        try:
            asyncio.run(_run_forever(container))
        except KeyboardInterrupt:
            print("Interrupted; supervisor stopped.")
    elif command == "serve":
        _serve(container, settings)
    elif command == "suggest":
        asyncio.run(_suggest_replies(container))
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    return execute(args, settings)


def _print_info(settings: AppSettings) -> None:
    accounts = settings.build_accounts()
    if not accounts:
        print("No accounts configured. Set REACH_INBOX_ACCOUNTS__<ID>__HOST and friends.")
        return
    print(f"Configured accounts ({len(accounts)}):")
    for account in accounts:
        state = "active" if account.active else "inactive"
        print(
            f"  {account.id:<12} {account.username or '-'} @ {account.host}:{account.port}"
            f" [{account.folder}] {state} password={mask_secret(account.password)}"
        )


def _print_providers(container: ServiceContainer) -> None:
    orchestrator: ClassificationOrchestrator = container.resolve("orchestrator")
    status = orchestrator.provider_status()
    if not status:
        print("No classification providers configured; keyword rules only.")
        return
    for entry in status:
        print(f"  {entry['name']:<10} {entry['model']:<28} {entry['state']}")


async def _run_sync(container: ServiceContainer) -> None:
    supervisor: SyncSupervisor = container.resolve("supervisor")
    cache: MailCache = container.resolve("cache")
    status = await supervisor.start()
    try:
        # One-shot: let queued notifications go out before stop() cancels them.
        await supervisor.drain()
        stats = cache.stats()
        print(
            f"Connected {status.connected_accounts}/{status.total_accounts} account(s); "
            f"{stats['total']} message(s) cached."
        )
        for category, count in stats["by_category"].items():
            print(f"  {category:<16} {count}")
    finally:
        await supervisor.stop()


async def _run_forever(container: ServiceContainer) -> None:
    supervisor: SyncSupervisor = container.resolve("supervisor")
    await supervisor.start()
    try:
        await asyncio.Event().wait()
    finally:
        await supervisor.stop()


async def _suggest_replies(container: ServiceContainer, limit: int = 5) -> None:
    supervisor: SyncSupervisor = container.resolve("supervisor")
    suggester: ReplySuggester = container.resolve("replies")
    await supervisor.start()
    try:
        leads = sorted(
            (
                message
                for message in supervisor.cache.snapshot()
                if message.category in HIGH_VALUE_CATEGORIES
            ),
            key=lambda message: message.date,
            reverse=True,
        )[:limit]
        if not leads:
            print("No interested or meeting_booked messages to answer.")
        for message in leads:
            suggestion = await asyncio.to_thread(suggester.suggest, message)
            print(
                f"{message.subject or '(no subject)'} [{suggestion.category}]"
                f" via {suggestion.provider}"
            )
            for index, reply in enumerate(suggestion.replies, start=1):
                print(f"  {index}. {reply.subject}")
                for line in reply.body.splitlines():
                    print(f"     {line}")
    finally:
        await supervisor.stop()


def _serve(container: ServiceContainer, settings: AppSettings) -> None:
    app = create_app(container.resolve("supervisor"), manage_lifecycle=True)
    # log_config=None keeps the dictConfig applied by configure_logging.
    uvicorn.run(app, host=settings.web.host, port=settings.web.port, log_config=None)


if __name__ == "__main__":
    raise SystemExit(main())
