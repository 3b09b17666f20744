"""Unit tests for template hashing and revision history."""

import pytest

from workloadset.controller.cache import REVISION
from workloadset.controller.revision import (
    REVISION_HASH_LENGTH,
    RevisionManager,
    hash_template,
    new_revision,
    revision_name,
    templates_equivalent,
)
from workloadset.utils.errors import RevisionCollisionError

from .conftest import NAMESPACE, FakeCluster, make_pod, make_revision, make_set, make_template


class TestHashTemplate:
    """Tests for hash_template."""

    def test_deterministic(self):
        assert hash_template(make_template()) == hash_template(make_template())
        assert len(hash_template(make_template())) == REVISION_HASH_LENGTH

    def test_key_order_does_not_matter(self):
        template = make_template()
        reordered = {"spec": template["spec"], "metadata": template["metadata"]}
        assert hash_template(template) == hash_template(reordered)

    def test_sensitive_to_template(self):
        assert hash_template(make_template("nginx:1.25")) != hash_template(
            make_template("nginx:1.26")
        )

    def test_sensitive_to_collision_count(self):
        template = make_template()
        assert hash_template(template, 0) != hash_template(template, 1)

    def test_ignores_server_metadata(self):
        template = make_template()
        template["metadata"]["creationTimestamp"] = None
        assert hash_template(template) == hash_template(make_template())


class TestTemplatesEquivalent:
    def test_defaulted_fields(self):
        explicit = make_template()
        container = explicit["spec"]["containers"][0]
        container["imagePullPolicy"] = "IfNotPresent"
        container["terminationMessagePath"] = "/dev/termination-log"
        explicit["spec"]["restartPolicy"] = "Always"
        explicit["spec"]["dnsPolicy"] = "ClusterFirst"
        assert templates_equivalent(make_template(), explicit)

    def test_different_image(self):
        assert not templates_equivalent(make_template("nginx:1.25"), make_template("nginx:1.26"))


class TestNewRevision:
    def test_revision_body(self):
        set_obj = make_set()
        revision = new_revision(set_obj, set_obj["spec"]["template"], 3, 0)
        hash = hash_template(set_obj["spec"]["template"])

        assert revision["kind"] == "ControllerRevision"
        assert revision["metadata"]["name"] == f"web-{hash}"
        assert revision["metadata"]["labels"]["controller-revision-hash"] == hash
        assert revision["metadata"]["labels"]["app"] == "web"
        assert revision["revision"] == 3
        assert revision["data"] == {"spec": {"template": set_obj["spec"]["template"]}}
        owner = revision["metadata"]["ownerReferences"][0]
        assert owner["uid"] == "uid-web"
        assert owner["controller"] is True


@pytest.fixture
def manager(cluster):
    return RevisionManager(cluster, max_collision_attempts=3)


class TestResolve:
    """Tests for RevisionManager.resolve."""

    @pytest.mark.asyncio
    async def test_creates_first_revision(self, manager, cluster):
        set_obj = make_set()
        revisions = await manager.resolve(set_obj, set_obj["spec"]["template"], [], [])

        assert revisions.update["revision"] == 1
        assert revisions.current is revisions.update
        assert revisions.collision_count == 0
        assert cluster.names(REVISION) == [revision_name(revisions.update)]

    @pytest.mark.asyncio
    async def test_reuses_latest_revision(self, manager, cluster):
        set_obj = make_set()
        existing = cluster.put(REVISION, make_revision(set_obj, 1))
        revisions = await manager.resolve(set_obj, set_obj["spec"]["template"], [], [existing])

        assert revision_name(revisions.update) == revision_name(existing)
        assert not [c for c in cluster.calls if c[0] == "create_revision"]

    @pytest.mark.asyncio
    async def test_new_template_gets_next_number(self, manager, cluster):
        set_obj = make_set(image="nginx:1.26")
        old = cluster.put(REVISION, make_revision(set_obj, 4, image="nginx:1.25"))
        pods = [make_pod(set_obj, 0, revision_name(old))]
        revisions = await manager.resolve(set_obj, set_obj["spec"]["template"], pods, [old])

        assert revisions.update["revision"] == 5
        assert revision_name(revisions.current) == revision_name(old)
        assert len(revisions.history) == 2

    @pytest.mark.asyncio
    async def test_rollback_renumbers_old_revision(self, manager, cluster):
        set_obj = make_set(image="nginx:1.25")
        old = cluster.put(REVISION, make_revision(set_obj, 1, image="nginx:1.25"))
        newer = cluster.put(REVISION, make_revision(set_obj, 2, image="nginx:1.26"))
        revisions = await manager.resolve(
            set_obj, set_obj["spec"]["template"], [], [old, newer]
        )

        assert revision_name(revisions.update) == revision_name(old)
        assert revisions.update["revision"] == 3
        assert ("patch_revision_number", NAMESPACE, revision_name(old), 3) in cluster.calls
        assert not [c for c in cluster.calls if c[0] == "create_revision"]

    @pytest.mark.asyncio
    async def test_collision_bumps_count(self, manager, cluster):
        set_obj = make_set()
        squatter = make_revision(set_obj, 1)
        squatter["data"] = {"spec": {"template": make_template("busybox")}}
        cluster.put(REVISION, squatter)

        revisions = await manager.resolve(set_obj, set_obj["spec"]["template"], [], [])

        assert revisions.collision_count == 1
        assert revision_name(revisions.update) == revision_name(make_revision(set_obj, 1, collision_count=1))
        assert len(cluster.names(REVISION)) == 2

    @pytest.mark.asyncio
    async def test_existing_equal_revision_is_adopted(self, manager, cluster):
        set_obj = make_set()
        existing = cluster.put(REVISION, make_revision(set_obj, 1))
        revisions = await manager.resolve(set_obj, set_obj["spec"]["template"], [], [])

        assert revision_name(revisions.update) == revision_name(existing)
        assert revisions.collision_count == 0

    @pytest.mark.asyncio
    async def test_collisions_exhausted(self, cluster):
        manager = RevisionManager(cluster, max_collision_attempts=2)
        set_obj = make_set()
        for count in range(2):
            squatter = make_revision(set_obj, 1, collision_count=count)
            squatter["data"] = {"spec": {"template": make_template(f"busybox:{count}")}}
            cluster.put(REVISION, squatter)

        with pytest.raises(RevisionCollisionError):
            await manager.resolve(set_obj, set_obj["spec"]["template"], [], [])

    def test_current_revision_from_status(self, manager):
        set_obj = make_set()
        first, second = make_revision(set_obj, 1, image="a"), make_revision(set_obj, 2, image="b")
        set_obj["status"] = {"currentRevision": revision_name(first)}
        assert manager.current_revision(set_obj, [], [first, second]) is first

    def test_current_revision_from_lowest_pod(self, manager):
        set_obj = make_set()
        first, second = make_revision(set_obj, 1, image="a"), make_revision(set_obj, 2, image="b")
        pods = [
            make_pod(set_obj, 2, revision_name(first)),
            make_pod(set_obj, 0, revision_name(second)),
        ]
        assert manager.current_revision(set_obj, pods, [first, second]) is second


class TestTruncateHistory:
    """Tests for RevisionManager.truncate_history."""

    @pytest.mark.asyncio
    async def test_keeps_limit_plus_live(self, manager, cluster):
        set_obj = make_set()
        history = [
            cluster.put(REVISION, make_revision(set_obj, n, image=f"nginx:{n}"))
            for n in range(1, 6)
        ]
        current, update = history[3], history[4]

        deleted = await manager.truncate_history(set_obj, 2, [], history, current, update)

        assert deleted == [revision_name(history[0])]
        assert len(cluster.names(REVISION)) == 4

    @pytest.mark.asyncio
    async def test_never_deletes_revisions_in_use(self, manager, cluster):
        set_obj = make_set()
        history = [
            cluster.put(REVISION, make_revision(set_obj, n, image=f"nginx:{n}"))
            for n in range(1, 4)
        ]
        pods = [make_pod(set_obj, 0, revision_name(history[0]))]

        deleted = await manager.truncate_history(
            set_obj, 0, pods, history, history[2], history[2]
        )

        assert deleted == [revision_name(history[1])]
