"""Main entry point for the Grafana org-mapping operator.

The operator watches a directory of Tenant manifests and keeps Grafana's
SSO orgMapping in line with them. It runs until SIGTERM/SIGINT.

Exit codes:
    0  clean shutdown
    1  configuration or startup failure
    2  credentials supplied inline through the environment
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import UTC

from .config import Config, ConfigurationError
from .credentials import CredentialError, load_credentials, reject_inline_credentials
from .external import TenantExternal
from .grafana import GrafanaSSOClient, new_client
from .reconciler import Reconciler
from .store import FileTenantStore

_HANDLER_NAME = "orgmapper"

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_ATTRS = frozenset(
    (
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
    )
)


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Configure structured logging with JSON output for production."""
    import json
    from datetime import datetime

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_ATTRS:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    # Replace the handler from an earlier call instead of stacking another
    for existing in list(root_logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Request lines from httpx would duplicate our own API logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(json_output=config.json_logging, level=config.log_level)

    try:
        reject_inline_credentials()
    except CredentialError as e:
        # SECURITY: never start with credentials in the environment
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2

    logger.info(
        "Starting Grafana org-mapping operator",
        extra={
            "grafana_url": config.grafana_url,
            "sso_provider": config.sso_provider,
            "tenants_dir": str(config.tenants_dir),
            "dry_run": config.dry_run,
        },
    )

    try:
        credentials = load_credentials(config.credentials_file)
        client = new_client(
            config.grafana_url,
            credentials,
            timeout=float(config.request_timeout_seconds),
        )
    except (CredentialError, ValueError) as e:
        logger.error("Failed to initialize Grafana client", extra={"error": str(e)})
        return 1

    async with client:
        return await run_operator(config, client, logger)


async def run_operator(
    config: Config, client: GrafanaSSOClient, logger: logging.Logger
) -> int:
    """Run the reconciliation loop until a shutdown signal arrives."""
    store = FileTenantStore(config.tenants_dir, config.effective_status_dir)
    external = TenantExternal(store, client, provider=config.sso_provider)
    reconciler = Reconciler(config, store, external)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        reconciler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await reconciler.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
