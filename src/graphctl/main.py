"""Environment-driven runner: one plan/apply cycle per invocation.

Configured entirely from GRAPHCTL_* environment variables (see config.py),
authenticates with Application Default Credentials, logs JSON to stdout and
maps SIGINT/SIGTERM to cancellation: operations already running finish,
nothing new starts.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import UTC

from google.auth.exceptions import DefaultCredentialsError

from .config import Config, ConfigurationError
from .drivers import ProviderClient
from .engine import Engine, ExitCode, exit_code_for
from .errors import PlanningError
from .gcp_client import create_provider_client
from .spec_loader import load_topology


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output for production."""
    import json
    from datetime import datetime

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        # LogRecord attributes that are not user-supplied extra fields
        RESERVED = frozenset(
            {
                "name",
                "msg",
                "args",
                "created",
                "filename",
                "funcName",
                "levelname",
                "levelno",
                "lineno",
                "module",
                "msecs",
                "pathname",
                "process",
                "processName",
                "relativeCreated",
                "stack_info",
                "exc_info",
                "exc_text",
                "thread",
                "threadName",
                "taskName",
                "message",
            }
        )

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }
            for key, value in record.__dict__.items():
                if key not in self.RESERVED:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Google client libraries
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def main() -> int:
    """Run one reconciliation cycle.

    Returns:
        Exit code (see ExitCode).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return ExitCode.CONFIGURATION_ERROR

    if config.topology_path is None:
        logger.error("Configuration error", extra={"error": "GRAPHCTL_TOPOLOGY is required"})
        return ExitCode.CONFIGURATION_ERROR

    logger.info(
        "Starting graphctl",
        extra={
            "project": config.project,
            "topology": str(config.topology_path),
            "dry_run": config.dry_run,
            "max_concurrency": config.max_concurrency,
        },
    )

    try:
        client = create_provider_client(config)
    except DefaultCredentialsError as e:
        logger.error("No application default credentials", extra={"error": str(e)})
        return ExitCode.CONFIGURATION_ERROR

    return await run_once(config, client, logger)


async def run_once(config: Config, client: ProviderClient, logger: logging.Logger) -> int:
    """Load the topology, then plan (dry run) or apply it."""
    assert config.topology_path is not None

    engine = Engine.from_config(config, client)
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        cancel_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        specs = load_topology(config.topology_path)
        if config.dry_run:
            changeset = engine.plan(specs)
            logger.info("Dry run, plan not applied", extra={"summary": changeset.summary()})
            return ExitCode.CONVERGED
        report = await engine.apply(specs, cancel_event)
    except PlanningError as e:
        logger.error(
            "Planning failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return ExitCode.PLANNING_ERROR
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    code = exit_code_for(report.status)
    logger.info(
        "graphctl finished",
        extra={"status": report.status.value, "exit_code": int(code)},
    )
    return code


def run() -> None:
    """Entry point for the environment-driven runner."""
    sys.exit(int(asyncio.run(main())))


if __name__ == "__main__":
    run()
