# recorder.py
from __future__ import annotations

import hashlib
import logging
from typing import Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from conditions import now_rfc3339
from resources import Resource

log = logging.getLogger(__name__)

COMPONENT = "waf.k8s.coraza.io/wafpolicy-controller"

NORMAL = "Normal"
WARNING = "Warning"


def event_name(obj: Resource, event_type: str, reason: str, message: str) -> str:
    """Stable name for an event: the same object, type, reason and message
    always map to the same Event, so repeats bump its count."""
    digest = hashlib.sha256(
        "\x00".join([obj.metadata.uid or obj.key, event_type, reason, message]).encode()
    ).hexdigest()
    return f"{obj.name}.{digest[:16]}"


class EventRecorder:
    """Emit core/v1 Events against an involved object.

    A repeat of an event already recorded updates count and lastTimestamp
    on the existing Event instead of creating a new one.

    Event delivery is best effort: a failed write is logged and dropped so
    it never fails the reconcile pass that produced it.
    """

    def __init__(self, corev1: Optional[client.CoreV1Api] = None, component: str = COMPONENT):
        self.corev1 = corev1 or client.CoreV1Api()
        self.component = component

    def event(self, obj: Resource, event_type: str, reason: str, message: str) -> None:
        name = event_name(obj, event_type, reason, message)
        ts = now_rfc3339()
        body = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"name": name, "namespace": obj.namespace},
            "involvedObject": {
                "apiVersion": obj.api_version(),
                "kind": obj.KIND,
                "name": obj.name,
                "namespace": obj.namespace,
                "uid": obj.metadata.uid,
                "resourceVersion": obj.metadata.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "firstTimestamp": ts,
            "lastTimestamp": ts,
            "count": 1,
        }
        try:
            try:
                self.corev1.create_namespaced_event(obj.namespace, body)
            except ApiException as e:
                if e.status != 409:
                    raise
                self._bump(obj.namespace, name, ts)
        except ApiException as e:
            log.warning("failed to record event %s/%s for %s: %s", event_type, reason, obj.key, e.reason)

    def _bump(self, namespace: str, name: str, ts: str) -> None:
        current = self.corev1.read_namespaced_event(name, namespace)
        count = (getattr(current, "count", None) or 1) + 1
        self.corev1.patch_namespaced_event(name, namespace, {"count": count, "lastTimestamp": ts})
