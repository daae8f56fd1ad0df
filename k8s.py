# k8s.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Type, TypeVar

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from resources import Resource

log = logging.getLogger(__name__)

FINALIZER = "waf.k8s.coraza.io/wafpolicy-finalizer"
DEFAULT_NAMESPACE = "default"

OP_CREATED = "created"
OP_UPDATED = "updated"

R = TypeVar("R", bound=Resource)


# ─────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────
class StoreError(Exception):
    """A store call failed; retry later."""


class NotFoundError(StoreError):
    pass


class ConflictError(StoreError):
    """resourceVersion precondition failed: somebody else wrote first."""


class MissingIdentityError(ValueError):
    pass


@contextmanager
def _api_errors(verb: str, kind: str, namespace: str, name: str) -> Iterator[None]:
    try:
        yield
    except ApiException as e:
        what = f"{verb} {kind} {namespace}/{name}"
        if e.status == 404:
            raise NotFoundError(f"{what}: not found") from e
        if e.status == 409:
            raise ConflictError(f"{what}: conflict: {e.reason}") from e
        raise StoreError(f"{what}: {e.status} {e.reason}") from e


# ─────────────────────────────────────────────
# Store client
# ─────────────────────────────────────────────
class KubeStore:
    """One client for every resource variant, backed by CustomObjectsApi."""

    # The API server garbage-collects Engines through ownerReferences.
    supports_owner_gc = True

    def __init__(self, api: Optional[client.CustomObjectsApi] = None, request_timeout: float = 30.0):
        self.api = api or client.CustomObjectsApi()
        self.request_timeout = request_timeout

    def _coords(self, cls: Type[Resource]) -> dict:
        return {"group": cls.GROUP, "version": cls.VERSION, "plural": cls.PLURAL}

    def get(self, cls: Type[R], namespace: str, name: str) -> R:
        with _api_errors("get", cls.KIND, namespace, name):
            obj = self.api.get_namespaced_custom_object(
                namespace=namespace,
                name=name,
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return cls.from_dict(obj)

    def list(self, cls: Type[R], namespace: str) -> List[R]:
        with _api_errors("list", cls.KIND, namespace, "*"):
            res = self.api.list_namespaced_custom_object(
                namespace=namespace,
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return [cls.from_dict(item) for item in res.get("items", []) or []]

    def create(self, obj: R) -> R:
        cls = type(obj)
        with _api_errors("create", cls.KIND, obj.namespace, obj.name):
            res = self.api.create_namespaced_custom_object(
                namespace=obj.namespace,
                body=obj.to_dict(),
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return cls.from_dict(res)

    def update(self, obj: R) -> R:
        """Full replace; obj.metadata.resource_version is the precondition."""
        cls = type(obj)
        with _api_errors("update", cls.KIND, obj.namespace, obj.name):
            res = self.api.replace_namespaced_custom_object(
                namespace=obj.namespace,
                name=obj.name,
                body=obj.to_dict(),
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return cls.from_dict(res)

    def patch(self, cls: Type[R], namespace: str, name: str, body: dict) -> R:
        with _api_errors("patch", cls.KIND, namespace, name):
            res = self.api.patch_namespaced_custom_object(
                namespace=namespace,
                name=name,
                body=body,
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return cls.from_dict(res)

    def patch_status(self, cls: Type[R], namespace: str, name: str, body: dict) -> R:
        with _api_errors("patch status", cls.KIND, namespace, name):
            res = self.api.patch_namespaced_custom_object_status(
                namespace=namespace,
                name=name,
                body=body,
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )
        return cls.from_dict(res)

    def delete(self, cls: Type[Resource], namespace: str, name: str) -> None:
        with _api_errors("delete", cls.KIND, namespace, name):
            self.api.delete_namespaced_custom_object(
                namespace=namespace,
                name=name,
                _request_timeout=self.request_timeout,
                **self._coords(cls),
            )


# ─────────────────────────────────────────────
# Finalizers
# ─────────────────────────────────────────────
def has_finalizer(obj: Resource) -> bool:
    return FINALIZER in obj.metadata.finalizers


def _write_finalizers(store, obj: R, fins: List[str]) -> R:
    # resourceVersion in a merge patch is checked by the API server, so a
    # concurrent writer turns this into a ConflictError instead of a lost update.
    patch = {
        "metadata": {
            "finalizers": fins,
            "resourceVersion": obj.metadata.resource_version,
        }
    }
    return store.patch(type(obj), obj.namespace, obj.name, patch)


def ensure_finalizer(store, obj: R) -> R:
    fins = list(obj.metadata.finalizers)
    if FINALIZER in fins:
        return obj
    fins.append(FINALIZER)
    return _write_finalizers(store, obj, fins)


def remove_finalizer(store, obj: R) -> R:
    fins = list(obj.metadata.finalizers)
    if FINALIZER not in fins:
        return obj
    fins = [f for f in fins if f != FINALIZER]
    return _write_finalizers(store, obj, fins)


# ─────────────────────────────────────────────
# Create-or-update
# ─────────────────────────────────────────────
def create_or_update(store, desired: Resource) -> str:
    """Create desired if it doesn't exist, replace it otherwise.

    The store's current resourceVersion is copied onto desired before the
    replace. A conflicting concurrent writer surfaces as ConflictError; it
    is not retried here, the next reconcile pass recomputes desired state.

    Returns OP_CREATED or OP_UPDATED.
    """
    cls = type(desired)
    if not cls.KIND:
        raise MissingIdentityError("desired object must have a kind set")
    if not desired.metadata.name:
        raise MissingIdentityError("desired object must have a name set")
    if not desired.metadata.namespace:
        desired.metadata.namespace = DEFAULT_NAMESPACE

    ns, name = desired.metadata.namespace, desired.metadata.name
    try:
        current = store.get(cls, ns, name)
    except NotFoundError:
        store.create(desired)
        log.debug("created %s %s/%s", cls.KIND, ns, name)
        return OP_CREATED

    desired.metadata.resource_version = current.metadata.resource_version
    store.update(desired)
    log.debug("updated %s %s/%s", cls.KIND, ns, name)
    return OP_UPDATED
