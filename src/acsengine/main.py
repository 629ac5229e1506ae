"""One-shot entry point: bring a cluster deployment in line with its attribute file.

Runs a single reconciliation and exits, the way a declarative host invokes a
provider:

- No state file: create the cluster
- State file present: update it (scale, upgrade, rotate, retag)
- DESTROY=true: delete it and remove the state file

Exit codes: 0 success, 1 failure, 2 security violation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from datetime import UTC
from pathlib import Path
from typing import Any

from .config import Config, ConfigurationError
from .errors import ClusterError
from .reconciler import ClusterReconciler
from .security import SecretlessViolationError
from .spec_loader import SpecLoadError, delete_state, load_attributes, load_state, save_state

DEFAULT_SPEC_FILE = "cluster.yaml"
STATE_FILENAME = "cluster.state.json"


def setup_logging() -> None:
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

            # Add extra fields from the record
            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_KEYS:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


_RESERVED_RECORD_KEYS = frozenset(
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


async def apply_cluster(
    reconciler: ClusterReconciler,
    spec_path: Path,
    state_path: Path,
) -> dict[str, Any]:
    """Create or update the cluster described by spec_path and persist its state.

    Raises:
        SpecLoadError: If the attribute or state file cannot be read.
        ClusterError: If validation, version policy or the deployment fails.
    """
    desired = load_attributes(spec_path)
    state = load_state(state_path)

    if state is None:
        new_state = await reconciler.create(desired)
    else:
        new_state = await reconciler.update(state, desired)

    save_state(state_path, new_state)
    return new_state


async def destroy_cluster(reconciler: ClusterReconciler, state_path: Path) -> bool:
    """Delete the cluster recorded in state_path. False if there is no state."""
    state = load_state(state_path)
    if state is None:
        return False
    await reconciler.delete(state)
    delete_state(state_path)
    return True


async def main() -> int:
    """Run one reconciliation.

    Environment Variables:
        SPEC_FILE: Cluster attribute file (default: cluster.yaml)
        STATE_FILE: State file (default: <output_dir>/cluster.state.json)
        DESTROY: If "true", delete the cluster instead of applying

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

    spec_path = Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE))
    state_path = Path(os.environ.get("STATE_FILE", str(config.output_dir / STATE_FILENAME)))
    destroy = os.environ.get("DESTROY", "").lower() in ("true", "1", "yes")

    logger.info(
        "Starting acs-engine cluster reconciliation",
        extra={
            "spec_file": str(spec_path),
            "state_file": str(state_path),
            "output_dir": str(config.output_dir),
            "destroy": destroy,
        },
    )

    try:
        reconciler = ClusterReconciler(config)
        if destroy:
            if not await destroy_cluster(reconciler, state_path):
                logger.info("No state file, nothing to delete")
            return 0

        state = await apply_cluster(reconciler, spec_path, state_path)
        logger.info(
            "Cluster reconciled",
            extra={
                "cluster": state.get("name"),
                "fqdn": state["master_profile"][0].get("fqdn"),
            },
        )
        return 0

    except SpecLoadError as e:
        logger.error(
            "Attribute loading failed",
            extra={"error": str(e), "spec_file": str(spec_path)},
        )
        return 1

    except SecretlessViolationError as e:
        # SECURITY: Credential detected in environment - fatal security error
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2

    except ClusterError as e:
        logger.error(
            "Cluster reconciliation rejected",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    except Exception as e:
        logger.exception("Reconciliation failed unexpectedly", extra={"error": str(e)})
        return 1


def run() -> None:
    """Entry point for the one-shot reconciler."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
