# observe/watch.py
"""Turn watch events into WAFPolicy reconcile keys."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

from k8s import StoreError
from resources import Engine, ObjectMeta, WAFPolicy
from workqueue import make_key

log = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


class PolicyEventFilter:
    """
    Only spec changes (a generation bump) and deletion requests need a pass.
    Status and finalizer writes, including our own, don't bump generation
    and are dropped here.
    """

    def __init__(self) -> None:
        self._seen: Dict[str, int] = {}
        self._lock = threading.Lock()

    def keys_for(self, event_type: str, obj: dict) -> List[str]:
        meta = ObjectMeta.from_dict((obj or {}).get("metadata"))
        if not meta.name:
            return []
        key = make_key(meta.namespace, meta.name)

        with self._lock:
            if event_type == DELETED:
                self._seen.pop(key, None)
                return []
            previous = self._seen.get(key)
            self._seen[key] = meta.generation

        if event_type == ADDED:
            return [key]
        if previous != meta.generation or meta.deletion_timestamp:
            return [key]
        return []

    def retain(self, objs: List[dict]) -> None:
        """Forget every policy missing from a fresh list; its DELETED event was lost."""
        live = set()
        for obj in objs:
            meta = ObjectMeta.from_dict((obj or {}).get("metadata"))
            live.add(make_key(meta.namespace, meta.name))
        with self._lock:
            for key in [k for k in self._seen if k not in live]:
                del self._seen[key]


def engine_owner_keys(event_type: str, obj: dict) -> List[str]:
    """Map an Engine event to the WAFPolicy that controls it, if any.

    Lets the next pass overwrite hand edits to an Engine, or recreate a
    deleted one.
    """
    engine = Engine.from_dict(obj or {})
    owner = engine.controller_owner()
    if not owner:
        return []
    if owner.get("kind") != WAFPolicy.KIND or owner.get("apiVersion") != WAFPolicy.api_version():
        return []
    name = owner.get("name")
    if not name:
        return []
    # ownerReferences are namespace-local
    return [make_key(engine.namespace, name)]


def find_policies_for_target(store, kind: str, name: str, namespace: str) -> List[str]:
    """Keys of every WAFPolicy in namespace whose targetRef is (kind, name).

    Targets carry no back-reference, so this is a scan of the namespace. A
    failed list yields no keys rather than an error: the watch keeps going.
    """
    try:
        policies = store.list(WAFPolicy, namespace)
    except StoreError as e:
        log.warning("listing WAFPolicies in %s for %s %s failed: %s", namespace, kind, name, e)
        return []

    return [
        make_key(p.namespace or namespace, p.name)
        for p in policies
        if p.target_ref.matches(kind, name)
    ]


def target_event_keys(store, kind: str, obj: dict) -> List[str]:
    meta = ObjectMeta.from_dict((obj or {}).get("metadata"))
    if not meta.name:
        return []
    return find_policies_for_target(store, kind, meta.name, meta.namespace)
