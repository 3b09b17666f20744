from typing import Any, Awaitable, Callable, Dict, Optional
from kubernetes_asyncio.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    V1DeleteOptions,
    V1Preconditions,
)
from kubernetes_asyncio.client.api_client import ApiClient
from functools import cached_property
from workloadset.utils.errors import (
    ConflictError,
    NotFoundError,
    translate_api_exception,
)


class BaseResource:
    """Plumbing shared by the operator's Kubernetes API clients.

    Reads hand out plain dictionaries in their API (camelCase) form and
    failed calls raise the store errors of `workloadset.utils.errors`.
    """

    shared_api_client: ApiClient = None
    _api_client: ApiClient = None

    def __init__(self, api_client: ApiClient = None) -> None:
        if api_client is not None:
            self._api_client = api_client

    @property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            if self.shared_api_client is not None:
                self._api_client = self.shared_api_client
            else:
                self._api_client = ApiClient()
        return self._api_client

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        return CoreV1Api(self.api_client)

    @cached_property
    def apps_v1_api(self) -> AppsV1Api:
        return AppsV1Api(self.api_client)

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        return CustomObjectsApi(self.api_client)

    def as_dict(self, obj: Any) -> Optional[Dict]:
        """Convert an API model to its serialized dictionary form."""
        if obj is None or isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def delete_options(self, uid: str = None) -> V1DeleteOptions:
        if uid is None:
            return V1DeleteOptions()
        return V1DeleteOptions(preconditions=V1Preconditions(uid=uid))

    async def call(self, coro: Awaitable) -> Optional[Dict]:
        """Await an API call, translating its ApiException."""
        try:
            return self.as_dict(await coro)
        except ApiException as ex:
            raise translate_api_exception(ex) from ex

    async def fetch(self, coro: Awaitable) -> Optional[Dict]:
        """Await a read, returning None when the object does not exist."""
        try:
            return await self.call(coro)
        except NotFoundError:
            return None

    async def delete(
        self, delete: Callable[..., Awaitable], namespace: str, name: str, uid: str = None
    ) -> bool:
        """Delete an object, returning False if it was already gone."""
        try:
            await self.call(delete(name, namespace, body=self.delete_options(uid)))
            return True
        except NotFoundError:
            return False
        except ConflictError:
            if uid is None:
                raise
            # uid precondition failed: the object we meant no longer exists
            return False
