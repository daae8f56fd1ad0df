# observe/runtime.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, List, Optional, Tuple, Type

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from observe.watch import ADDED, PolicyEventFilter, engine_owner_keys, target_event_keys
from resources import Engine, Gateway, HTTPRoute, Resource, WAFPolicy

log = logging.getLogger(__name__)

WATCH_TIMEOUT_SECONDS = 300
MAX_BACKOFF_SECONDS = 30.0

EventHandler = Callable[[str, dict], List[str]]
RelistHook = Callable[[List[dict]], None]


def _coords(cls: Type[Resource]) -> dict:
    return {"group": cls.GROUP, "version": cls.VERSION, "plural": cls.PLURAL}


def list_objects(api, cls: Type[Resource], namespace: str) -> Tuple[List[dict], str]:
    """Current objects of one kind and the list's resourceVersion to watch from."""
    if namespace:
        res = api.list_namespaced_custom_object(namespace=namespace, **_coords(cls))
    else:
        res = api.list_cluster_custom_object(**_coords(cls))
    items = res.get("items", []) or []
    return items, (res.get("metadata") or {}).get("resourceVersion", "") or ""


def stream_events(
    api, cls: Type[Resource], namespace: str, resource_version: str = ""
) -> Tuple[watch.Watch, Iterator[dict]]:
    """Open a watch on one resource kind, namespaced or cluster-wide."""
    w = watch.Watch()
    kwargs = dict(_coords(cls), timeout_seconds=WATCH_TIMEOUT_SECONDS)
    if resource_version:
        kwargs["resource_version"] = resource_version
    if namespace:
        stream = w.stream(api.list_namespaced_custom_object, namespace=namespace, **kwargs)
    else:
        stream = w.stream(api.list_cluster_custom_object, **kwargs)
    return w, stream


def _resource_version(obj: dict) -> str:
    return (obj.get("metadata") or {}).get("resourceVersion", "") or ""


def run_watch_loop(
    stop_event: threading.Event,
    api,
    cls: Type[Resource],
    namespace: str,
    handler: EventHandler,
    enqueue: Callable[[str], None],
    on_relist: Optional[RelistHook] = None,
) -> None:
    """
    Watch one kind until stop_event is set, feeding keys from handler into
    enqueue.

    The first connect lists the kind and hands every object to handler as
    ADDED, then watches from the list's resourceVersion. A stream that ends
    cleanly (server timeout) resumes from the last resourceVersion seen, so
    nothing is replayed. Only an expired resourceVersion (410 Gone) forces a
    fresh list.
    """
    log.info("starting %s watch (namespace=%s)", cls.KIND, namespace or "*")
    backoff = 1.0
    resource_version = ""

    while not stop_event.is_set():
        w = None
        try:
            if not resource_version:
                items, resource_version = list_objects(api, cls, namespace)
                log.debug("%s: listed %d objects at rv=%s", cls.KIND, len(items), resource_version)
                for obj in items:
                    for key in handler(ADDED, obj):
                        enqueue(key)
                if on_relist is not None:
                    on_relist(items)

            w, stream = stream_events(api, cls, namespace, resource_version)
            for event in stream:
                if stop_event.is_set():
                    break
                event_type = event.get("type", "")
                obj = event.get("object") or {}
                if event_type == "ERROR":
                    log.info("%s watch error event, relisting: %s", cls.KIND, obj.get("message", obj))
                    resource_version = ""
                    break
                resource_version = _resource_version(obj) or resource_version
                for key in handler(event_type, obj):
                    enqueue(key)
            backoff = 1.0
        except Exception as e:
            if isinstance(e, ApiException) and e.status == 410:
                log.info("%s watch resourceVersion %s expired, relisting", cls.KIND, resource_version)
                resource_version = ""
                continue
            log.warning("%s watch failed, reconnecting in %.1fs: %s", cls.KIND, backoff, e)
            stop_event.wait(backoff)
            backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
        finally:
            if w is not None:
                w.stop()

    log.info("%s watch stopped", cls.KIND)


def start_watchers(
    stop_event: threading.Event,
    api,
    store,
    namespace: str,
    enqueue: Callable[[str], None],
) -> List[threading.Thread]:
    policy_filter = PolicyEventFilter()
    handlers: List[Tuple[Type[Resource], EventHandler, Optional[RelistHook]]] = [
        (WAFPolicy, policy_filter.keys_for, policy_filter.retain),
        (Engine, engine_owner_keys, None),
        (Gateway, lambda et, obj: target_event_keys(store, Gateway.KIND, obj), None),
        (HTTPRoute, lambda et, obj: target_event_keys(store, HTTPRoute.KIND, obj), None),
    ]

    threads = []
    for cls, handler, on_relist in handlers:
        t = threading.Thread(
            target=run_watch_loop,
            args=(stop_event, api, cls, namespace, handler, enqueue, on_relist),
            name=f"watch-{cls.PLURAL}",
            daemon=True,
        )
        t.start()
        threads.append(t)
    return threads
