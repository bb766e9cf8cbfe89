import os
import sys
import signal
import logging
import threading
from pathlib import Path
from typing import List, Optional

from .backends import create_backend
from .config import ProcessingConfig
from .errors import ConfigError, InputError
from .logging_setup import setup_logging, log_exception
from .models import JobStatus
from .orchestrator import BatchOrchestrator
from .processor import process_single
from .progress import LoggingProgress, TqdmProgress

logger = logging.getLogger("event_worker")

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_CONFIG_ERROR = 2


def load_config() -> ProcessingConfig:
    """Load configuration from EVENT_WORKER_CONFIG (TOML) if set, else from the environment"""
    config_path = os.getenv("EVENT_WORKER_CONFIG")
    if config_path:
        return ProcessingConfig.from_toml(config_path)
    return ProcessingConfig.from_env()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    argv = sys.argv[1:] if argv is None else argv

    try:
        config = load_config()
        setup_logging(config.LOG_LEVEL, config.LOG_DIR)
        config.validate()
    except (ConfigError, ValueError) as e:
        setup_logging()
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        backend = create_backend(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    input_path = Path(os.getenv("INPUT_PATH") or (argv[0] if argv else config.INPUT_DIR))
    logger.info(f"Event worker starting: backend={config.BACKEND}, input={input_path}, "
                f"output={config.OUTPUT_DIR}, format={config.OUTPUT_FORMAT}")

    try:
        if input_path.is_file():
            return _run_single(input_path, config, backend)
        return _run_batch(input_path, config, backend)
    except InputError as e:
        logger.error(str(e))
        return EXIT_JOB_FAILED
    except Exception as e:
        log_exception(logger, f"Event worker failed: {str(e)}")
        return EXIT_JOB_FAILED


def _run_single(video_path: Path, config: ProcessingConfig, backend) -> int:
    cancel_event = threading.Event()

    def signal_handler(signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, cancelling...")
        cancel_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    job = process_single(str(video_path), config, backend, cancel_event)
    if job.status != JobStatus.COMPLETED:
        logger.error(f"Processing failed: {job.error}")
        return EXIT_JOB_FAILED

    logger.info(f"Results saved to {job.output_path}")
    return EXIT_OK


def _run_batch(input_dir: Path, config: ProcessingConfig, backend) -> int:
    config.INPUT_DIR = str(input_dir)
    orchestrator = BatchOrchestrator(config, backend, listeners=[TqdmProgress(), LoggingProgress()])

    def signal_handler(signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, cancelling batch...")
        orchestrator.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    summary = orchestrator.run()
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
