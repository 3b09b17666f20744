"""Unit tests for the kopf handlers."""

from unittest.mock import AsyncMock, Mock

import kopf
import pytest

from workloadset.handlers.children import on_claim_event, on_pod_event
from workloadset.handlers.workloadset import defaults, finalize, on_workloadset_event, resync
from workloadset.controller.cache import CLAIM, POD, WORKLOADSET
from workloadset.types.defaults import set_defaults
from workloadset.utils.errors import StoreError

from .conftest import make_pod, make_set


@pytest.fixture
def memo():
    memo = kopf.Memo()
    memo.controller = Mock()
    memo.controller.reconciler.finalize = AsyncMock(return_value=[])
    return memo


class TestDefaultsHandler:
    def test_patches_unset_fields(self):
        body = make_set()
        patch = kopf.Patch()

        defaults(body=body, patch=patch, memo=kopf.Memo())

        assert patch["spec"]["podManagementPolicy"] == "OrderedReady"
        assert patch["spec"]["revisionHistoryLimit"] == 10
        assert "replicas" not in patch["spec"]

    def test_defaulted_object_is_not_patched(self):
        patch = kopf.Patch()

        defaults(body=set_defaults(make_set()), patch=patch, memo=kopf.Memo())

        assert not patch


class TestEventHandlers:
    def test_event_feeds_controller(self, memo):
        body = make_set()
        on_workloadset_event(type="ADDED", body=body, memo=memo)
        memo.controller.handle_event.assert_called_once_with(WORKLOADSET, "ADDED", body)

    def test_event_before_startup_is_ignored(self):
        on_workloadset_event(type="ADDED", body=make_set(), memo=kopf.Memo())

    def test_resync_enqueues(self, memo):
        resync(name="web", namespace="default", memo=memo)
        memo.controller.enqueue.assert_called_once_with("default/web", trigger_source="resync")

    def test_unlabelled_children_are_dispatched(self, memo):
        pod = make_pod(make_set(), 0, "web-abc")
        pod["metadata"]["labels"] = {}
        claim = {"metadata": {"name": "data-web-0", "namespace": "default"}}

        on_pod_event(type="DELETED", body=pod, memo=memo)
        on_claim_event(type="MODIFIED", body=claim, memo=memo)

        assert memo.controller.handle_event.call_args_list[0].args == (POD, "DELETED", pod)
        assert memo.controller.handle_event.call_args_list[1].args == (CLAIM, "MODIFIED", claim)


class TestFinalizeHandler:
    @pytest.mark.asyncio
    async def test_finalize(self, memo):
        body = make_set()
        await finalize(body=body, name="web", namespace="default", memo=memo, logger=Mock())
        memo.controller.reconciler.finalize.assert_awaited_once_with(body)

    @pytest.mark.asyncio
    async def test_store_errors_become_temporary(self, memo):
        memo.controller.reconciler.finalize.side_effect = StoreError("down", status=503)
        with pytest.raises(kopf.TemporaryError):
            await finalize(body=make_set(), name="web", namespace="default", memo=memo, logger=Mock())

    @pytest.mark.asyncio
    async def test_not_started(self):
        with pytest.raises(kopf.TemporaryError):
            await finalize(
                body=make_set(), name="web", namespace="default", memo=kopf.Memo(), logger=Mock()
            )
