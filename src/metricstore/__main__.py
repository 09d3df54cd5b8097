"""CLI entry point for metricstore maintenance commands.

Examples:
    ```bash
    python -m metricstore init
    python -m metricstore ping --config config/metricstore.yaml
    python -m metricstore dump --log-level DEBUG
    python -m metricstore ping --log-format json
    ```
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from metricstore.core.exceptions import MetricStoreError
from metricstore.core.logger import Logger, StructuredFormatter
from metricstore.core.store import Store
from metricstore.core.yaml import load_yaml


DEFAULT_CONFIG = Path("config") / "metricstore.yaml"

logger = Logger("cli")


async def cmd_init(store: Store) -> int:
    """Bootstrap the schema and report which database was used."""
    if not store.is_ready:
        logger.error("init_failed", reason="database unreachable")
        return 1
    logger.info("init_completed", database=await store.describe())
    return 0


async def cmd_ping(store: Store) -> int:
    await store.ping()
    logger.info("ping_ok")
    return 0


async def cmd_dump(store: Store) -> int:
    """Print every stored row as ``name mtype delta value``."""
    for row in await store.get_all():
        print(f"{row.name} {row.mtype} {row.delta} {row.value}")  # noqa: T201
    return 0


COMMANDS: dict[str, Callable[[Store], Awaitable[int]]] = {
    "init": cmd_init,
    "ping": cmd_ping,
    "dump": cmd_dump,
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(prog="metricstore", description="metricstore maintenance")

    parser.add_argument("command", choices=list(COMMANDS.keys()), help="Command to run")

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Store config path (default: {DEFAULT_CONFIG})",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--log-format",
        choices=["kv", "json"],
        default="kv",
        help="Log line format (default: kv)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str, log_format: str = "kv") -> None:
    """Install ``StructuredFormatter`` (key=value or JSON) on the root handler."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(json_output=log_format == "json"))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_config(path: Path) -> dict[str, Any]:
    """Load the YAML config, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


async def main(argv: list[str] | None = None) -> int:
    """Parse args, open the store, run one command, close the store."""
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        config = _load_config(args.config)
        store = Store.from_dict(config) if config else Store()
    except (MetricStoreError, ValidationError) as e:
        logger.error("config_invalid", error=str(e))
        return 1

    try:
        async with store:
            return await COMMANDS[args.command](store)
    except MetricStoreError as e:
        logger.error(f"{args.command}_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
