"""Entry point for running the worker loop as a supervised process."""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .core.config import TaskRelayConfig, load_config
from .core.orchestrator import Orchestrator
from .utils.rich_logging import ContextLogger, setup_rich_logging

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


def setup_logging(config: TaskRelayConfig):
    """Setup logging for the worker."""
    return setup_rich_logging(
        worker_id=config.worker_id,
        log_dir=config.storage.data_dir / "logs",
        log_level=config.logging.level,
        use_file=config.logging.use_file,
        use_json=config.logging.use_json,
    )


async def run_worker(
    orchestrator: Orchestrator,
    context_logger: Optional[ContextLogger] = None,
    once: bool = False,
) -> int:
    """Run the worker until stopped. Returns the process exit code."""
    logger = logging.getLogger(__name__)

    if not orchestrator.check_backends():
        logger.error("Neither the broker nor the file queue is usable, refusing to start")
        return EXIT_STARTUP_FAILURE

    worker = orchestrator.create_worker(logger=context_logger)

    if once:
        await worker.run_once()
        return EXIT_OK

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except (NotImplementedError, RuntimeError):
            # Not available off the main thread or on some platforms
            pass

    await worker.run()
    return EXIT_OK


def main(config_path: Optional[Path] = None):
    """Main entry point for the worker process."""
    if config_path is None:
        config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config/taskrelay.yaml")

    try:
        config = load_config(config_path)
        context_logger = setup_logging(config)
        orchestrator = Orchestrator(config)
    except Exception as e:
        logging.getLogger(__name__).exception(f"Worker failed to start: {e}")
        sys.exit(EXIT_STARTUP_FAILURE)

    try:
        code = asyncio.run(run_worker(orchestrator, context_logger))
    except KeyboardInterrupt:
        code = EXIT_OK
    finally:
        orchestrator.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
