from __future__ import annotations

import argparse
import asyncio
import logging

from offline_agent.agent import OfflineAgent
from offline_agent.config import YamlConfigLoader
from offline_agent.config.models import AppConfig, ConfigLoadRequest
from offline_agent.core.errors import SeedError
from offline_agent.logging import init_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="offline-agent", description="Offline cache and push agent runner")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: run
    run_parser = subparsers.add_parser("run", help="Install the asset cache and start the local proxy")
    run_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Serve for N seconds then exit (useful for smoke testing).",
    )

    subparsers.add_parser("install", help="Seed and promote the configured cache generation")
    subparsers.add_parser("status", help="Show cache generations and push subscription state")
    subparsers.add_parser("subscribe", help="Opt in to push notifications")
    subparsers.add_parser("unsubscribe", help="Opt out of push notifications")

    return parser


async def _ask_on_console() -> bool:
    loop = asyncio.get_running_loop()
    answer = await loop.run_in_executor(None, input, "Allow notifications? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _install(agent: OfflineAgent) -> bool:
    try:
        await agent.install()
    except SeedError as e:
        logger.error("Cache install failed; keeping the previous generation. error=%s", e)
        return False
    await agent.activate()
    return True


async def _run(agent: OfflineAgent, args: argparse.Namespace) -> None:
    logger.info("Starting offline agent. origin=%s cache=%s", agent.origin, agent.config.cache.name)
    if not await _install(agent):
        logger.warning("Serving with the previously installed cache generation.")
    await agent.serve(run_seconds=args.run_seconds)


async def _status(agent: OfflineAgent) -> None:
    current = agent.store.current()
    for record in agent.store.generations():
        print(f"generation {record.generation_id} state={record.state} sequence={record.sequence}")
    if current is not None:
        print(f"current {current.generation_id} entries={agent.store.entry_count(current)}")
    else:
        print("current none")
    print(f"push {await agent.subscriptions.current_status()}")


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    config = await _load_config(args)
    init_logging(config.logging)
    agent = OfflineAgent(config, ask_permission=_ask_on_console)
    try:
        if args.command == "run":
            await _run(agent, args)
        elif args.command == "install":
            await _install(agent)
        elif args.command == "status":
            await _status(agent)
        elif args.command == "subscribe":
            outcome = await agent.subscriptions.subscribe()
            print("subscribed" if outcome else f"subscribe failed: {outcome.error}")
        elif args.command == "unsubscribe":
            outcome = await agent.subscriptions.unsubscribe()
            print("unsubscribed" if outcome else f"unsubscribe failed: {outcome.error}")
    finally:
        await agent.close()


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
