import copy
import kopf
import logging
from workloadset.controller.cache import WORKLOADSET
from workloadset.controller.manager import WorkloadSetController
from workloadset.types.defaults import set_defaults
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.types.settings import RESYNC_PERIOD_SECONDS
from workloadset.utils.errors import StoreError, convert_store_error

GROUP = WorkloadSetResources.GROUP
VERSION = WorkloadSetResources.VERSION
PLURAL = WorkloadSetResources.PLURAL


class TimerLogFilter(logging.Filter):
    def filter(self, record):
        """Timer logs are noisy so we filter them out."""
        return "Timer " not in record.getMessage()


kopf_logger = logging.getLogger("kopf.objects")
kopf_logger.addFilter(TimerLogFilter())


def get_controller(memo: kopf.Memo) -> WorkloadSetController:
    controller = getattr(memo, "controller", None)
    if controller is None:
        raise kopf.TemporaryError("WorkloadSet controller is not running yet", delay=5)
    return controller


@kopf.on.event(GROUP, VERSION, PLURAL)
def on_workloadset_event(type, body, memo: kopf.Memo, **kwargs):
    """Feed WorkloadSet watch events into the controller."""
    controller = getattr(memo, "controller", None)
    if controller is None:
        return
    controller.handle_event(WORKLOADSET, type, body)


@kopf.timer(GROUP, VERSION, PLURAL, interval=RESYNC_PERIOD_SECONDS, idle=RESYNC_PERIOD_SECONDS)
def resync(name, namespace, memo: kopf.Memo, **kwargs):
    """Periodically reconcile every WorkloadSet, whether or not anything changed."""
    controller = getattr(memo, "controller", None)
    if controller is not None:
        controller.enqueue(WorkloadSetResources.key(namespace, name), trigger_source="resync")


@kopf.on.delete(GROUP, VERSION, PLURAL)
async def finalize(body, name, namespace, memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Apply the claim retention policy before the WorkloadSet goes away."""
    controller = get_controller(memo)
    try:
        claims = await controller.reconciler.finalize(body)
    except StoreError as ex:
        convert_store_error(ex)
    if claims:
        logger.info(f"Handled {len(claims)} claim(s) of {namespace}/{name}: {claims}")


@kopf.on.mutate(GROUP, VERSION, PLURAL, operations=["CREATE", "UPDATE"], id="defaults")
def defaults(body, patch: kopf.Patch, memo: kopf.Memo, **kwargs):
    """Fill unset spec fields on admission."""
    conf = getattr(memo, "conf", None)
    enabled = conf.max_unavailable_enabled if conf is not None else True
    spec = dict(body.get("spec") or {})
    defaulted = set_defaults({"spec": copy.deepcopy(spec)}, enabled)["spec"]
    for field, value in defaulted.items():
        if spec.get(field) != value:
            patch.spec[field] = value
