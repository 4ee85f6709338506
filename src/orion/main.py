"""
main.py — ORION Entry Point

Usage:
    orion                                   # serve with config/config.yaml
    orion --config path/to/config.yaml
    orion --log-level DEBUG --port 9191
    python -m orion
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="orion",
        description="ORION — real-time conversational agent backend",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $ORION_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument("--host", default=None, help="Override gateway.host")
    parser.add_argument("--port", type=int, default=None, help="Override gateway.port")
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from orion.config.settings import ConfigError, load_settings
    from orion.observability.logger import get_logger, setup_logging

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    if args.host:
        settings.gateway.host = args.host
    if args.port:
        settings.gateway.port = args.port

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
        max_value_chars=settings.logging.max_value_chars,
    )
    return settings, get_logger("orion.main")


async def seed_tools(store, definitions: list[dict], log) -> int:
    """Upsert tool definitions from config into the store."""
    from pydantic import ValidationError

    from orion.store.models import ToolDefinition

    seeded = 0
    for raw in definitions:
        try:
            tool = ToolDefinition.model_validate(raw)
        except ValidationError as e:
            log.error("orion.tool_seed_invalid", tool=raw.get("name"), error=str(e))
            continue
        await store.upsert_tool(tool)
        seeded += 1
    log.info("orion.tools_seeded", count=seeded)
    return seeded


async def serve(settings, log) -> None:
    from orion.agent.classifier import Classifier
    from orion.agent.dispatcher import SessionDispatcher
    from orion.agent.executor import PlanExecutor
    from orion.agent.naming import SessionNamer
    from orion.agent.planner import Planner
    from orion.agent.utils import drain_background_tasks
    from orion.brain import ProviderFactory
    from orion.brain.types import CompletionOptions
    from orion.gateway.registry import ConnectionRegistry, TurnGate
    from orion.gateway.server import GatewayServer, StaticTokenAuthenticator
    from orion.safety.guardrails import Guardrails
    from orion.store import create_store
    from orion.tools.invoker import ToolInvoker

    store = create_store(settings.store)
    await store.init()
    await seed_tools(store, settings.tools.definitions, log)

    llm = settings.llm
    chain = ProviderFactory.from_settings(settings)
    registry = ConnectionRegistry()
    gate = TurnGate(settings.pipeline.busy_policy)

    server = GatewayServer(
        store,
        registry,
        StaticTokenAuthenticator(settings.auth_tokens),
        host=settings.gateway.host,
        port=settings.gateway.port,
        max_connections=settings.gateway.max_connections,
        max_message_bytes=settings.gateway.max_message_bytes,
        auth_timeout_seconds=settings.gateway.auth_timeout_seconds,
    )

    invoker = ToolInvoker(
        store,
        http_timeout_seconds=settings.tools.http_timeout_seconds,
        sandbox_timeout_seconds=settings.tools.sandbox_timeout_seconds,
    )
    planner = Planner(
        chain,
        max_tokens=llm.planning_max_tokens,
        temperature=llm.temperature,
        timeout_seconds=llm.timeout_seconds,
        context_entries=settings.pipeline.planner_context_entries,
    )
    executor = PlanExecutor(
        invoker,
        chain,
        step_timeout_seconds=settings.pipeline.step_timeout_seconds,
        tool_retries=settings.pipeline.tool_retries,
        response_options=CompletionOptions(
            temperature=llm.temperature,
            max_tokens=llm.response_max_tokens,
            timeout_seconds=llm.timeout_seconds,
        ),
    )
    namer = SessionNamer(
        store,
        chain,
        settings.naming,
        broadcast=server.broadcast,
        title_options=CompletionOptions(
            fast=True,
            temperature=llm.temperature,
            max_tokens=llm.title_max_tokens,
            timeout_seconds=llm.timeout_seconds,
        ),
    )
    dispatcher = SessionDispatcher(
        store,
        server,
        chain,
        Guardrails(store, settings.guardrails),
        planner,
        executor,
        namer=namer,
        config=settings.pipeline,
        gate=gate,
        registry=registry,
        classifier=Classifier.from_config(settings.classifier),
        chat_options=CompletionOptions(
            temperature=llm.temperature,
            max_tokens=llm.chat_max_tokens,
            timeout_seconds=llm.timeout_seconds,
        ),
    )
    server.bind_dispatcher(dispatcher)

    try:
        await server.start()
        log.info("orion.ready", providers=[p.name for p in chain.providers], store=settings.store.backend)
        await server.wait_closed()
    finally:
        await server.shutdown()
        await drain_background_tasks(cancel=True)
        await invoker.aclose()
        await store.close()
        log.info("orion.stopped")


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from orion import __version__

    log.info(
        "orion.starting",
        version=__version__,
        providers=settings.configured_providers,
        host=settings.gateway.host,
        port=settings.gateway.port,
    )
    await serve(settings, log)
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
