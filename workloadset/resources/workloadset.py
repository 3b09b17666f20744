from typing import Dict, Optional
from workloadset.resources.base import BaseResource
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.utils.errors import NotFoundError


class WorkloadSetStore(BaseResource):
    """Object store used by the reconciler and the deletion handler."""

    async def fetch_workloadset(self, namespace: str, name: str) -> Optional[Dict]:
        """Retrieve the latest state of a WorkloadSet"""
        return await self.fetch(
            self.custom_objects_api.get_namespaced_custom_object(
                group=WorkloadSetResources.GROUP,
                version=WorkloadSetResources.VERSION,
                namespace=namespace,
                plural=WorkloadSetResources.PLURAL,
                name=name,
            )
        )

    async def replace_workloadset_status(self, namespace: str, name: str, body: Dict) -> Dict:
        """Write the status subresource; `body` must carry metadata.resourceVersion."""
        return await self.call(
            self.custom_objects_api.replace_namespaced_custom_object_status(
                group=WorkloadSetResources.GROUP,
                version=WorkloadSetResources.VERSION,
                namespace=namespace,
                plural=WorkloadSetResources.PLURAL,
                name=name,
                body=body,
            )
        )

    async def fetch_pod(self, namespace: str, name: str) -> Optional[Dict]:
        """Retrieve the latest state of a pod"""
        return await self.fetch(
            self.core_v1_api.read_namespaced_pod(name=name, namespace=namespace)
        )

    async def create_pod(self, namespace: str, body: Dict) -> Dict:
        return await self.call(self.core_v1_api.create_namespaced_pod(namespace=namespace, body=body))

    async def patch_pod(self, namespace: str, name: str, body: Dict) -> Dict:
        return await self.call(
            self.core_v1_api.patch_namespaced_pod(name=name, namespace=namespace, body=body)
        )

    async def delete_pod(self, namespace: str, name: str, uid: str = None) -> bool:
        return await self.delete(self.core_v1_api.delete_namespaced_pod, namespace, name, uid)

    async def create_claim(self, namespace: str, body: Dict) -> Dict:
        return await self.call(
            self.core_v1_api.create_namespaced_persistent_volume_claim(
                namespace=namespace, body=body
            )
        )

    async def delete_claim(self, namespace: str, name: str, uid: str = None) -> bool:
        return await self.delete(
            self.core_v1_api.delete_namespaced_persistent_volume_claim, namespace, name, uid
        )

    async def adopt_claim(self, namespace: str, name: str, patch: Dict) -> Optional[Dict]:
        """Write the owner references of an orphaned claim.

        `patch` carries the complete reference list and the resourceVersion
        it was computed from, so a concurrent adoption fails with a conflict.
        """
        try:
            return await self.call(
                self.core_v1_api.patch_namespaced_persistent_volume_claim(
                    name=name, namespace=namespace, body=patch
                )
            )
        except NotFoundError:
            return None

    async def release_claim(self, namespace: str, name: str, owner_uid: str) -> Optional[Dict]:
        """Drop the owner reference pointing at `owner_uid` from a claim."""
        patch = {"metadata": {"ownerReferences": [{"$patch": "delete", "uid": owner_uid}]}}
        try:
            return await self.call(
                self.core_v1_api.patch_namespaced_persistent_volume_claim(
                    name=name, namespace=namespace, body=patch
                )
            )
        except NotFoundError:
            return None

    async def fetch_revision(self, namespace: str, name: str) -> Optional[Dict]:
        """Retrieve the latest state of a controller revision"""
        return await self.fetch(
            self.apps_v1_api.read_namespaced_controller_revision(name=name, namespace=namespace)
        )

    async def create_revision(self, namespace: str, body: Dict) -> Dict:
        return await self.call(
            self.apps_v1_api.create_namespaced_controller_revision(namespace=namespace, body=body)
        )

    async def patch_revision_number(self, namespace: str, name: str, revision: int) -> Dict:
        return await self.call(
            self.apps_v1_api.patch_namespaced_controller_revision(
                name=name, namespace=namespace, body={"revision": revision}
            )
        )

    async def delete_revision(self, namespace: str, name: str) -> bool:
        return await self.delete(
            self.apps_v1_api.delete_namespaced_controller_revision, namespace, name
        )
