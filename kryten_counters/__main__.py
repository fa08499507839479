"""CLI entry point for kryten-counters."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .main import CountersApp


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kryten Counters — Chat Command Counter Service")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit without starting")
    return parser.parse_args(argv)


def find_config(explicit: str | None) -> str | None:
    if explicit:
        return explicit
    for candidate in [
        "/etc/kryten/kryten-counters/config.yaml",
        "./config.yaml",
    ]:
        if Path(candidate).exists():
            return candidate
    return None


async def main_async(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("counters")

    config_path = find_config(args.config)
    if not config_path:
        logger.error("No config file found. Use --config or place config.yaml in CWD.")
        sys.exit(1)

    if args.validate_config:
        from .config import load_config

        try:
            load_config(config_path)
            logger.info("Config is valid.")
        except Exception as e:
            logger.error("Config validation failed: %s", e)
            sys.exit(1)
        return

    app = CountersApp(config_path)

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
