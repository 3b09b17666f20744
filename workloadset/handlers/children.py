import kopf
from workloadset.common.models.labels import ResourceLabels
from workloadset.controller.cache import CLAIM, POD, REVISION


def _dispatch(kind, type, body, memo: kopf.Memo):
    controller = getattr(memo, "controller", None)
    if controller is not None:
        controller.handle_event(kind, type, body)


# Owned pods and claims may lack their identity labels until repaired.
@kopf.on.event("pods")
def on_pod_event(type, body, memo: kopf.Memo, **kwargs):
    _dispatch(POD, type, body, memo)


@kopf.on.event("persistentvolumeclaims")
def on_claim_event(type, body, memo: kopf.Memo, **kwargs):
    _dispatch(CLAIM, type, body, memo)


@kopf.on.event(
    "controllerrevisions", labels={ResourceLabels.REVISION_LABEL: kopf.PRESENT}
)
def on_revision_event(type, body, memo: kopf.Memo, **kwargs):
    _dispatch(REVISION, type, body, memo)
