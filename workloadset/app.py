import kopf
import logging
import workloadset.handlers.probes as probes
import workloadset.handlers.workloadset as workloadset_handlers
import workloadset.handlers.children as children
from workloadset.controller.cache import ObjectCache
from workloadset.controller.expectations import ExpectationTracker
from workloadset.controller.manager import WorkloadSetController
from workloadset.controller.queue import WorkQueue
from workloadset.controller.reconciler import WorkloadSetReconciler
from workloadset.resources.base import BaseResource
from workloadset.resources.workloadset import WorkloadSetStore
from workloadset.types.settings import Settings
from workloadset.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


# Configure Kopf settings
@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    memo.conf = conf = Settings()

    # Create a shared ApiClient for all resources to prevent connection leaks
    shared_client = ApiClient()
    BaseResource.shared_api_client = shared_client
    logger.info("Shared Kubernetes API client initialized")

    # Initialize sensor infrastructure
    sensor_delegate = SensorDelegate()
    prometheus_monitor = PrometheusMonitor()
    sensor_delegate.add(prometheus_monitor)
    memo.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    # Initialize Prometheus metrics server
    try:
        init_metrics_server()
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logger.warning("Continuing without metrics server")

    cache = ObjectCache()
    expectations = ExpectationTracker(timeout=conf.expectations_timeout_seconds)
    queue = WorkQueue(
        base_delay=conf.queue_base_delay_seconds,
        max_delay=conf.queue_max_delay_seconds,
    )
    reconciler = WorkloadSetReconciler(
        WorkloadSetStore(shared_client),
        cache,
        expectations,
        conf=conf,
        sensor=sensor_delegate,
    )
    memo.controller = WorkloadSetController(
        reconciler,
        cache,
        expectations,
        queue,
        workers=conf.workers,
        sensor=sensor_delegate,
    )
    await memo.controller.start()

    if not conf.max_unavailable_enabled:
        logger.warning(
            "maxUnavailable is disabled as per configuration. "
            "Rolling updates replace one pod at a time."
        )

    # Admission webhook for defaulting, only with a certificate to serve it
    if conf.webhook_enabled:
        if conf.webhook_cert_file and conf.webhook_key_file:
            settings.admission.server = kopf.WebhookServer(
                port=conf.webhook_port,
                certfile=conf.webhook_cert_file,
                pkeyfile=conf.webhook_key_file,
            )
            settings.admission.managed = "workloadset.x-k8s.io"
            logger.info(f"Admission webhook enabled on port {conf.webhook_port}")
        else:
            logger.warning(
                "Admission webhook is enabled but no certificate was supplied; "
                "WorkloadSets will not be defaulted on admission."
            )

    # Posting events to the Kubernetes API only for logging >= Warning
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    controller = getattr(memo, "controller", None)
    if controller is not None:
        await controller.shutdown(timeout=memo.conf.shutdown_timeout_seconds)

    # Close the shared API client
    if BaseResource.shared_api_client:
        await BaseResource.shared_api_client.close()
        BaseResource.shared_api_client = None
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "probes",
    "workloadset_handlers",
    "children",
]
