"""Control loop of a single WorkloadSet."""

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple

from marshmallow import ValidationError

from workloadset.controller.cache import (
    CLAIM,
    POD,
    REVISION,
    WORKLOADSET,
    ObjectCache,
    controller_ref,
)
from workloadset.controller.expectations import ExpectationTracker
from workloadset.controller.lifecycle import (
    ADOPT_CLAIM,
    CREATE_CLAIM,
    CREATE_POD,
    DELETE_CLAIM,
    DELETE_POD,
    PATCH_POD,
    Action,
    Plan,
    PodLifecycleOrchestrator,
    is_claim_of,
)
from workloadset.controller.revision import RevisionManager, revision_name
from workloadset.controller.status import StatusReconciler
from workloadset.sensors.base import OperatorSensor
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.types.models.workloadset_spec import WorkloadSetSpec
from workloadset.types.schemas.workloadset_spec import WorkloadSetSpecSchema
from workloadset.types.schemas.retention_policy import (
    PersistentVolumeClaimRetentionPolicySchema,
)
from workloadset.types.settings import Settings
from workloadset.utils.errors import AlreadyExistsError, ConflictError, NotFoundError
from workloadset.utils.helpers import utc_now
from workloadset.utils.pods import is_terminating
from workloadset.utils.selectors import selector_is_empty, selector_matches

logger = logging.getLogger(__name__)


class ReconcileResult(NamedTuple):
    requeue: bool = False
    requeue_after: Optional[float] = None


def validate_selector(spec: WorkloadSetSpec) -> Optional[str]:
    """Describe what is wrong with the selector, if anything."""
    selector = spec.selector.as_selector()
    if selector_is_empty(selector):
        return "spec.selector must not be empty"
    if not selector_matches(selector, spec.template_labels):
        return "spec.selector does not match spec.template.metadata.labels"
    return None


class WorkloadSetReconciler:
    """Drives the pods, claims and revisions of a WorkloadSet towards its spec."""

    def __init__(
        self,
        store,
        cache: ObjectCache,
        expectations: ExpectationTracker,
        conf: Settings = None,
        sensor: OperatorSensor = None,
        clock=utc_now,
        status_retry_wait=None,
    ) -> None:
        conf = conf or Settings()
        self.store = store
        self.cache = cache
        self.expectations = expectations
        self.sensor = sensor or OperatorSensor()
        self.clock = clock
        self.revisions = RevisionManager(
            store,
            sensor=self.sensor,
            max_collision_attempts=conf.revision_collision_max_attempts,
            semantic_comparison=conf.semantic_revision_comparison_enabled,
        )
        self.orchestrator = PodLifecycleOrchestrator(
            max_unavailable_enabled=conf.max_unavailable_enabled
        )
        self.status = StatusReconciler(
            store,
            cache,
            sensor=self.sensor,
            max_attempts=conf.status_update_max_attempts,
            retry_wait=status_retry_wait,
        )

    def _list_children(
        self, set_obj: Mapping, spec: WorkloadSetSpec
    ) -> Tuple[List[Dict], List[Dict], List[Dict]]:
        metadata = set_obj["metadata"]
        namespace, uid = metadata.get("namespace"), metadata.get("uid")
        selector = spec.selector.as_selector()
        pods = self.cache.list(POD, namespace, selector=selector, owner_uid=uid)
        claims = [
            c
            for c in self.cache.list(CLAIM, namespace)
            if (controller_ref(c) or {}).get("uid") == uid
            or (controller_ref(c) is None and is_claim_of(metadata["name"], spec, c))
        ]
        history = self.cache.list(REVISION, namespace, owner_uid=uid)
        return pods, claims, history

    async def reconcile(self, key: str) -> ReconcileResult:
        namespace, name = WorkloadSetResources.split_key(key)
        set_obj = self.cache.get(WORKLOADSET, namespace, name)
        if set_obj is None:
            logger.debug(f"{key}: WorkloadSet is gone, dropping expectations")
            self.expectations.delete(key)
            return ReconcileResult()
        if is_terminating(set_obj):
            logger.debug(f"{key}: WorkloadSet is being deleted, nothing to do")
            return ReconcileResult()

        try:
            spec: WorkloadSetSpec = WorkloadSetSpecSchema().load(set_obj.get("spec") or {})
        except ValidationError as ex:
            return await self._invalid(key, set_obj, f"Invalid spec: {ex.messages}")
        problem = validate_selector(spec)
        if problem:
            return await self._invalid(key, set_obj, problem)

        pods, claims, history = self._list_children(set_obj, spec)

        if not self.expectations.satisfied(key):
            logger.debug(f"{key}: waiting for earlier actions to show up, updating status only")
            await self._update_status_only(key, set_obj, spec, pods)
            return ReconcileResult()

        revisions = await self.revisions.resolve(set_obj, spec.template, pods, history)
        now = self.clock()
        plan = self.orchestrator.plan(
            set_obj, spec, pods, claims, revisions.current, revisions.update, now
        )
        if plan.waiting:
            logger.info(f"{key}: {plan.waiting}")
            self.sensor.on_readiness_wait(name, namespace, plan.waiting)
        failed = await self.apply(key, set_obj, spec, plan)

        pods, _, _ = self._list_children(set_obj, spec)
        fields = self.status.compute(
            set_obj,
            spec,
            pods,
            revision_name(revisions.current),
            revision_name(revisions.update),
            revisions.collision_count,
            now,
        )
        try:
            await self.status.update(set_obj, fields)
        except NotFoundError:
            logger.debug(f"{key}: WorkloadSet vanished before its status was written")
            return ReconcileResult()

        await self.revisions.truncate_history(
            set_obj,
            spec.revision_history_limit,
            pods,
            revisions.history,
            revisions.current,
            revisions.update,
        )

        if failed:
            return ReconcileResult(requeue=True)
        return ReconcileResult(requeue_after=plan.requeue_after)

    async def _invalid(self, key: str, set_obj: Mapping, message: str) -> ReconcileResult:
        logger.warning(f"{key}: {message}")
        try:
            await self.status.mark_invalid(set_obj, message)
        except NotFoundError:
            pass
        return ReconcileResult()

    async def _update_status_only(
        self, key: str, set_obj: Mapping, spec: WorkloadSetSpec, pods: List[Dict]
    ) -> None:
        status = set_obj.get("status") or {}
        update = status.get("updateRevision")
        if not update:
            return
        fields = self.status.compute(
            set_obj,
            spec,
            pods,
            status.get("currentRevision") or update,
            update,
            int(status.get("collisionCount") or 0),
            self.clock(),
        )
        try:
            await self.status.update(set_obj, fields)
        except NotFoundError:
            logger.debug(f"{key}: WorkloadSet vanished before its status was written")

    async def apply(
        self, key: str, set_obj: Mapping, spec: WorkloadSetSpec, plan: Plan
    ) -> List[Action]:
        """Execute the plan and return the actions that failed."""
        if not plan.actions:
            return []
        self.expectations.expect(key, creates=plan.creates, deletes=plan.deletes)

        if spec.is_monotonic:
            failed, skipped = await self._run_sequence(key, set_obj, plan.actions)
        else:
            groups: Dict[int, List[Action]] = OrderedDict()
            for action in plan.actions:
                groups.setdefault(action.ordinal, []).append(action)
            results = await asyncio.gather(
                *(self._run_sequence(key, set_obj, actions) for actions in groups.values())
            )
            failed = [a for f, _ in results for a in f]
            skipped = [a for _, s in results for a in s]

        unobserved = failed + skipped
        if unobserved:
            self.expectations.lower(
                key,
                creates=[a.ref for a in unobserved if a.is_create],
                deletes=[a.ref for a in unobserved if a.is_delete],
            )
            logger.warning(
                f"{key}: {len(failed)} action(s) failed, {len(skipped)} skipped: "
                f"{[f'{a.kind} {a.name}' for a in failed]}"
            )
        return failed

    async def _run_sequence(
        self, key: str, set_obj: Mapping, actions: List[Action]
    ) -> Tuple[List[Action], List[Action]]:
        for i, action in enumerate(actions):
            if not await self._execute(key, set_obj, action):
                return [action], list(actions[i + 1 :])
        return [], []

    async def _execute(self, key: str, set_obj: Mapping, action: Action) -> bool:
        metadata = set_obj["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        state = self.sensor.on_action_start(name, namespace, action.kind, action.name)
        try:
            if action.kind == CREATE_CLAIM:
                await self.store.create_claim(namespace, action.body)
            elif action.kind == CREATE_POD:
                await self.store.create_pod(namespace, action.body)
            elif action.kind == DELETE_POD:
                if not await self.store.delete_pod(namespace, action.name, uid=action.uid):
                    self.expectations.deletion_observed(key, action.ref)
            elif action.kind == DELETE_CLAIM:
                if not await self.store.delete_claim(namespace, action.name, uid=action.uid):
                    self.expectations.deletion_observed(key, action.ref)
            elif action.kind == PATCH_POD:
                await self._patch_pod(namespace, action)
            elif action.kind == ADOPT_CLAIM:
                if await self.store.adopt_claim(namespace, action.name, action.body) is None:
                    logger.debug(f"{key}: claim {action.name} is gone, nothing to adopt")
            else:
                raise ValueError(f"Unknown action {action.kind}")
        except AlreadyExistsError:
            logger.info(f"{key}: {action.name} already exists")
            self.expectations.creation_observed(key, action.ref)
        except Exception as ex:
            logger.error(f"{key}: {action.kind} {action.name} failed: {ex}")
            self.sensor.on_action_complete(
                name, namespace, action.kind, action.name, state, False, ex
            )
            return False
        else:
            logger.info(f"{key}: {action.kind} {action.name}")
        self.sensor.on_action_complete(name, namespace, action.kind, action.name, state, True)
        return True

    async def _patch_pod(self, namespace: str, action: Action) -> None:
        """Patch identity labels, retrying once against a re-fetched pod."""
        labels = action.body["metadata"]["labels"]
        try:
            await self.store.patch_pod(namespace, action.name, action.body)
        except NotFoundError:
            return
        except ConflictError:
            pod = await self.store.fetch_pod(namespace, action.name)
            if pod is None:
                return
            body = {
                "metadata": {
                    "labels": labels,
                    "resourceVersion": pod["metadata"].get("resourceVersion"),
                }
            }
            await self.store.patch_pod(namespace, action.name, body)

    async def finalize(self, set_obj: Mapping) -> List[str]:
        """Apply the claim retention policy of a WorkloadSet being deleted.

        Returns the names of the claims that were deleted or released.
        """
        metadata = set_obj["metadata"]
        namespace, name, uid = metadata.get("namespace"), metadata["name"], metadata.get("uid")
        key = WorkloadSetResources.key(namespace, name)
        raw_policy = (set_obj.get("spec") or {}).get("persistentVolumeClaimRetentionPolicy")
        try:
            policy = PersistentVolumeClaimRetentionPolicySchema().load(raw_policy or {})
        except ValidationError as ex:
            logger.warning(f"{key}: invalid claim retention policy, retaining claims: {ex.messages}")
            policy = PersistentVolumeClaimRetentionPolicySchema().load({})
        claims = self.cache.list(CLAIM, namespace, owner_uid=uid)

        handled = []
        for claim in claims:
            claim_name = claim["metadata"]["name"]
            if policy.delete_on_set_deletion:
                await self.store.delete_claim(namespace, claim_name)
                logger.info(f"{key}: deleted claim {claim_name}")
            else:
                await self.store.release_claim(namespace, claim_name, uid)
                logger.info(f"{key}: retained claim {claim_name}")
            handled.append(claim_name)
        self.expectations.delete(key)
        return handled
