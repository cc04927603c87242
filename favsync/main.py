"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

import aiofiles
import orjson

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from favsync.config import Config, config
from favsync.errors import ConfigurationError, FavSyncError
from favsync.logging_conf import setup_logging
from favsync.jobs.runner import SyncOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Favorites sync and enrichment")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode: save payloads with unresolved fields to data/dev/",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Mirror favorites, then enrich in the background")
    sync_parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Return as soon as the sync is done, without waiting for enrichment",
    )

    enrich_parser = subparsers.add_parser("enrich", help="Enrich every record still missing fields")
    enrich_parser.add_argument(
        "--max-items",
        type=int,
        default=None,
        help=f"Stop after N items (default: {config.ENRICH_MAX_ITEMS or 'no limit'})",
    )

    subparsers.add_parser("status", help="Show session, credential and store status")

    credentials_parser = subparsers.add_parser("credentials", help="Save login credentials")
    credentials_parser.add_argument("email")
    credentials_parser.add_argument("password")
    credentials_parser.add_argument("--user-id", default=None, help="Upstream user id")

    cookies_parser = subparsers.add_parser("cookies", help="Load a raw browser cookie string")
    cookies_parser.add_argument("raw", help="Cookie header value, e.g. 'a=b; c=d'")
    cookies_parser.add_argument("--csrf-token", default=None, help="X-Csrf-Token value")
    cookies_parser.add_argument("--anon-id", default=None, help="X-Anon-Id value")

    import_parser = subparsers.add_parser(
        "import", help="Import favorites and cookies exported by the browser extension"
    )
    import_parser.add_argument("path", type=Path, help="JSON file with 'favorites' and 'cookies' lists")

    subparsers.add_parser("login", help="Run the external login agent now")

    preview_parser = subparsers.add_parser("preview", help="Print one normalized listing page")
    preview_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace, orchestrator: SyncOrchestrator) -> int:
    """Execute one subcommand. Returns the process exit code."""
    session = orchestrator.session

    if args.command == "sync":
        result = await orchestrator.sync()
        print(f"{result.message} (new: {result.new_count}, total: {result.total_count})")
        if not result.success:
            return 1
        if not args.no_wait and orchestrator.enrichment_task is not None:
            logger.info("Waiting for background enrichment to finish...")
            state = await orchestrator.wait_for_enrichment()
            if state is not None:
                print(f"Enrichment: {state.get_summary()}")
        return 0

    if args.command == "enrich":
        if args.max_items is not None:
            orchestrator.enrichment.max_items = args.max_items
        state = await orchestrator.enrichment.run()
        if state is None:
            print("Enrichment already running")
            return 1
        print(f"Enrichment: {state.get_summary()}")
        return 1 if state.aborted else 0

    if args.command == "status":
        for key, value in (await orchestrator.status()).items():
            print(f"{key}: {value}")
        return 0

    if args.command == "credentials":
        credential = await session.vault.save(args.email, args.password, args.user_id)
        print(f"Saved credentials for {credential.email}")
        return 0

    if args.command == "cookies":
        count = await session.store.load_raw(args.raw)
        if args.csrf_token:
            await session.store.save_csrf_token(args.csrf_token)
        if args.anon_id:
            await session.store.save_anon_id(args.anon_id)
        print(f"Loaded {count} cookies")
        return 0

    if args.command == "import":
        try:
            async with aiofiles.open(args.path, "rb") as f:
                payload = orjson.loads(await f.read())
        except FileNotFoundError:
            print(f"No such file: {args.path}")
            return 1
        except orjson.JSONDecodeError as e:
            print(f"Not valid JSON: {e}")
            return 1
        result = await orchestrator.import_payload(payload)
        print(result.message)
        if result.success and orchestrator.enrichment_task is not None:
            state = await orchestrator.wait_for_enrichment()
            if state is not None:
                print(f"Enrichment: {state.get_summary()}")
        return 0 if result.success else 1

    if args.command == "login":
        ok = await session.force_login()
        print("Login succeeded" if ok else "Login failed")
        return 0 if ok else 1

    if args.command == "preview":
        records = await orchestrator.preview_page(args.page)
        for record in records:
            print(
                f"{record.external_id} | {record.title} | {record.brand} | "
                f"{record.price} | sold={record.sold} | {record.size} | {record.condition}"
            )
        print(f"{len(records)} items on page {args.page}")
        return 0

    logger.error(f"Unknown command: {args.command}")
    return 2


async def _main(args: argparse.Namespace) -> int:
    async with build_orchestrator(dev_mode=args.dev) as orchestrator:
        return await run_command(args, orchestrator)


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging("DEBUG" if args.verbose or args.dev else config.LOG_LEVEL)

    try:
        Config.validate()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.dev:
        logger.info("DEV mode: unresolved payloads will be saved to data/dev/")

    try:
        exit_code = asyncio.run(_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except FavSyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
