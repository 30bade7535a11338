"""
main.py — Single entry point.

Validates configuration, then runs the aiohttp analysis gateway until
SIGINT / SIGTERM.

Architecture:
  asyncio event loop
    └── aiohttp web server  (/analyze, /analyze-text, /health)
          └── providers.manager → Gemini / OpenAI / Anthropic
"""
import asyncio
import logging
import signal
import sys
from pathlib import Path

import config

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    # Log file lives in DATA_DIR so a single Docker volume mount captures it
    data_dir = Path(config.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(data_dir / "gateway.log"), encoding="utf-8"),
        ],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def run() -> None:
    from server import start_server

    web_runner = await start_server()

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    logger.info("✅ Gateway is running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down…")
        await web_runner.cleanup()
        logger.info("Goodbye.")


def main() -> None:
    setup_logging()
    try:
        config.validate()
    except config.ConfigError as exc:
        logger.critical("FATAL: %s", exc)
        sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
