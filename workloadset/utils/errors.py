import json
import kopf
import kubernetes_asyncio

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"


class WorkloadSetError(Exception):
    """Base class for all controller errors."""


class StoreError(WorkloadSetError):
    """An object store call failed."""

    def __init__(self, message: str, status: int = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The object does not exist (anymore)."""


class ConflictError(StoreError):
    """The write was based on a stale resourceVersion."""


class AlreadyExistsError(StoreError):
    """An object with the same name already exists."""


class RevisionCollisionError(WorkloadSetError):
    """Template hash kept colliding with differing revisions."""


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        return json.loads(ex.body).get("reason", "").lower()
    except (TypeError, ValueError, AttributeError):
        return ""


def already_exists_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return _reason(ex) == _ALREADY_EXISTS


def not_found_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def conflict_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and not already_exists_error(ex)


def translate_api_exception(ex: kubernetes_asyncio.client.ApiException) -> StoreError:
    """Map an ApiException onto the store error taxonomy."""
    message = f"Kubernetes API error ({ex.status}): {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if "message" in body:
                message = f"{message} - {body['message']}"
    except (TypeError, ValueError, AttributeError):
        pass

    if already_exists_error(ex):
        return AlreadyExistsError(message, status=ex.status)
    if not_found_error(ex):
        return NotFoundError(message, status=ex.status)
    if conflict_error(ex):
        return ConflictError(message, status=ex.status)
    return StoreError(message, status=ex.status)


def convert_store_error(ex: StoreError, permanent: bool = None):
    """
    Convert a store error to a Kopf-friendly exception.

    Args:
        ex: The StoreError to convert
        permanent: If True, raises PermanentError (won't retry). If False, raises
                   TemporaryError (will retry). If None, determined by status code.

    Raises:
        kopf.TemporaryError or kopf.PermanentError
    """
    if not isinstance(ex, StoreError):
        raise ex

    # 4xx errors (except 408, 409, 429) are typically permanent
    if permanent is None:
        status = ex.status or 0
        is_permanent = 400 <= status < 500 and status not in [408, 409, 429]
    else:
        is_permanent = permanent

    if is_permanent:
        raise kopf.PermanentError(str(ex))
    else:
        raise kopf.TemporaryError(str(ex), delay=30)
