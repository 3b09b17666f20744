import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Number of worker tasks draining the reconcile queue
WORKERS = int(_getenv("WORKERS", 5))

#: Seconds between periodic full resyncs of every WorkloadSet
RESYNC_PERIOD_SECONDS = float(_getenv("RESYNC_PERIOD_SECONDS", 300.0))

#: Seconds after which unobserved creates/deletes are no longer awaited
EXPECTATIONS_TIMEOUT_SECONDS = float(_getenv("EXPECTATIONS_TIMEOUT_SECONDS", 300.0))

#: Maximum attempts to persist status when the write conflicts
STATUS_UPDATE_MAX_ATTEMPTS = int(_getenv("STATUS_UPDATE_MAX_ATTEMPTS", 5))

#: Maximum attempts to disambiguate a revision name collision
REVISION_COLLISION_MAX_ATTEMPTS = int(_getenv("REVISION_COLLISION_MAX_ATTEMPTS", 5))

#: Initial per-key requeue delay after a failed reconcile
QUEUE_BASE_DELAY_SECONDS = float(_getenv("QUEUE_BASE_DELAY_SECONDS", 0.005))

#: Upper bound of the per-key requeue delay
QUEUE_MAX_DELAY_SECONDS = float(_getenv("QUEUE_MAX_DELAY_SECONDS", 1000.0))

#: Seconds to wait for in-flight reconciles when the operator stops
SHUTDOWN_TIMEOUT_SECONDS = float(_getenv("SHUTDOWN_TIMEOUT_SECONDS", 30.0))

#: Honor updateStrategy.rollingUpdate.maxUnavailable (otherwise one pod at a time)
MAX_UNAVAILABLE_ENABLED = bool(_getenv("MAX_UNAVAILABLE_ENABLED", True))

#: Treat templates that only differ in defaulted fields as the same revision
SEMANTIC_REVISION_COMPARISON_ENABLED = bool(
    _getenv("SEMANTIC_REVISION_COMPARISON_ENABLED", True)
)

#: Serve the mutating admission webhook that applies WorkloadSet defaults
WEBHOOK_ENABLED = bool(_getenv("WEBHOOK_ENABLED", False))

#: Port the admission webhook listens on
WEBHOOK_PORT = int(_getenv("WEBHOOK_PORT", 8443))

#: TLS certificate and key served by the admission webhook
WEBHOOK_CERT_FILE = _getenv("WEBHOOK_CERT_FILE", None)
WEBHOOK_KEY_FILE = _getenv("WEBHOOK_KEY_FILE", None)


class Settings:
    """Operator settings"""

    workers: int = WORKERS
    resync_period_seconds: float = RESYNC_PERIOD_SECONDS
    expectations_timeout_seconds: float = EXPECTATIONS_TIMEOUT_SECONDS
    status_update_max_attempts: int = STATUS_UPDATE_MAX_ATTEMPTS
    revision_collision_max_attempts: int = REVISION_COLLISION_MAX_ATTEMPTS
    queue_base_delay_seconds: float = QUEUE_BASE_DELAY_SECONDS
    queue_max_delay_seconds: float = QUEUE_MAX_DELAY_SECONDS
    shutdown_timeout_seconds: float = SHUTDOWN_TIMEOUT_SECONDS
    max_unavailable_enabled: bool = MAX_UNAVAILABLE_ENABLED
    semantic_revision_comparison_enabled: bool = SEMANTIC_REVISION_COMPARISON_ENABLED
    webhook_enabled: bool = WEBHOOK_ENABLED
    webhook_port: int = WEBHOOK_PORT
    webhook_cert_file: str = WEBHOOK_CERT_FILE
    webhook_key_file: str = WEBHOOK_KEY_FILE

    def __init__(
        self,
        *args,
        workers: int = None,
        resync_period_seconds: float = None,
        expectations_timeout_seconds: float = None,
        status_update_max_attempts: int = None,
        revision_collision_max_attempts: int = None,
        queue_base_delay_seconds: float = None,
        queue_max_delay_seconds: float = None,
        shutdown_timeout_seconds: float = None,
        max_unavailable_enabled: bool = None,
        semantic_revision_comparison_enabled: bool = None,
        webhook_enabled: bool = None,
        webhook_port: int = None,
        webhook_cert_file: str = None,
        webhook_key_file: str = None,
        **kwargs,
    ):
        if workers is not None:
            self.workers = workers

        if resync_period_seconds is not None:
            self.resync_period_seconds = resync_period_seconds

        if expectations_timeout_seconds is not None:
            self.expectations_timeout_seconds = expectations_timeout_seconds

        if status_update_max_attempts is not None:
            self.status_update_max_attempts = status_update_max_attempts

        if revision_collision_max_attempts is not None:
            self.revision_collision_max_attempts = revision_collision_max_attempts

        if queue_base_delay_seconds is not None:
            self.queue_base_delay_seconds = queue_base_delay_seconds

        if queue_max_delay_seconds is not None:
            self.queue_max_delay_seconds = queue_max_delay_seconds

        if shutdown_timeout_seconds is not None:
            self.shutdown_timeout_seconds = shutdown_timeout_seconds

        if max_unavailable_enabled is not None:
            self.max_unavailable_enabled = max_unavailable_enabled

        if semantic_revision_comparison_enabled is not None:
            self.semantic_revision_comparison_enabled = (
                semantic_revision_comparison_enabled
            )

        if webhook_enabled is not None:
            self.webhook_enabled = webhook_enabled

        if webhook_port is not None:
            self.webhook_port = webhook_port

        if webhook_cert_file is not None:
            self.webhook_cert_file = webhook_cert_file

        if webhook_key_file is not None:
            self.webhook_key_file = webhook_key_file
