"""In-memory store, recorder and document builders shared by the tests."""

from __future__ import annotations

import copy
import itertools
from typing import Dict, List, Optional, Tuple

from k8s import ConflictError, NotFoundError, StoreError
from resources import Gateway, HTTPRoute, WAFPolicy

TEST_IMAGE = "oci://ghcr.io/test/coraza-proxy-wasm:latest"


def _merge(dst: dict, patch: dict) -> dict:
    for k, v in patch.items():
        if v is None:
            dst.pop(k, None)
        elif isinstance(v, dict) and isinstance(dst.get(k), dict):
            _merge(dst[k], v)
        else:
            dst[k] = copy.deepcopy(v)
    return dst


class FakeStore:
    """In-memory stand-in for the API server, keyed by (kind, namespace, name)."""

    def __init__(self, supports_owner_gc: bool = True):
        self.supports_owner_gc = supports_owner_gc
        self.objects: Dict[Tuple[str, str, str], dict] = {}
        self.calls: List[Tuple[str, str, str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self._rv = itertools.count(1)
        self._uid = itertools.count(1)

    # helpers -------------------------------------------------------------
    def fail(self, verb: str, kind: str, err: Optional[Exception] = None) -> None:
        self.failures[(verb, kind)] = err or StoreError(f"{verb} {kind}: boom")

    def seed(self, obj: dict) -> dict:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("namespace", "default")
        meta.setdefault("uid", f"uid-{next(self._uid)}")
        meta.setdefault("generation", 1)
        meta["resourceVersion"] = str(next(self._rv))
        self.objects[(obj["kind"], meta["namespace"], meta["name"])] = obj
        return obj

    def raw(self, kind: str, namespace: str, name: str) -> Optional[dict]:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def writes(self) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] not in ("get", "list")]

    def _call(self, verb: str, kind: str, namespace: str, name: str) -> None:
        self.calls.append((verb, kind, namespace, name))
        err = self.failures.get((verb, kind))
        if err is not None:
            raise err

    def _require(self, kind: str, namespace: str, name: str) -> dict:
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise NotFoundError(f"{kind} {namespace}/{name}: not found")
        return obj

    def _check_rv(self, current: dict, rv: Optional[str]) -> None:
        if rv and rv != current["metadata"]["resourceVersion"]:
            raise ConflictError("the object has been modified")

    # store interface -----------------------------------------------------
    def get(self, cls, namespace, name):
        self._call("get", cls.KIND, namespace, name)
        return cls.from_dict(copy.deepcopy(self._require(cls.KIND, namespace, name)))

    def list(self, cls, namespace):
        self._call("list", cls.KIND, namespace, "*")
        return [
            cls.from_dict(copy.deepcopy(o))
            for (kind, ns, _), o in sorted(self.objects.items())
            if kind == cls.KIND and ns == namespace
        ]

    def create(self, obj):
        body = obj.to_dict()
        meta = body["metadata"]
        self._call("create", obj.KIND, meta["namespace"], meta["name"])
        if (obj.KIND, meta["namespace"], meta["name"]) in self.objects:
            raise ConflictError("already exists")
        meta.pop("resourceVersion", None)
        return type(obj).from_dict(self.seed(body))

    def update(self, obj):
        body = obj.to_dict()
        meta = body["metadata"]
        self._call("update", obj.KIND, meta["namespace"], meta["name"])
        current = self._require(obj.KIND, meta["namespace"], meta["name"])
        self._check_rv(current, meta.get("resourceVersion"))
        cur_meta = current["metadata"]
        meta["uid"] = cur_meta["uid"]
        meta["generation"] = cur_meta["generation"]
        if body.get("spec") != current.get("spec"):
            meta["generation"] += 1
        meta["resourceVersion"] = str(next(self._rv))
        if "status" in current:
            body["status"] = current["status"]
        self.objects[(obj.KIND, meta["namespace"], meta["name"])] = body
        return type(obj).from_dict(copy.deepcopy(body))

    def patch(self, cls, namespace, name, body):
        self._call("patch", cls.KIND, namespace, name)
        current = self._require(cls.KIND, namespace, name)
        self._check_rv(current, (body.get("metadata") or {}).get("resourceVersion"))
        _merge(current, body)
        current["metadata"]["resourceVersion"] = str(next(self._rv))
        return cls.from_dict(copy.deepcopy(current))

    def patch_status(self, cls, namespace, name, body):
        self._call("patch_status", cls.KIND, namespace, name)
        current = self._require(cls.KIND, namespace, name)
        current["status"] = copy.deepcopy(body["status"])
        current["metadata"]["resourceVersion"] = str(next(self._rv))
        return cls.from_dict(copy.deepcopy(current))

    def delete(self, cls, namespace, name):
        self._call("delete", cls.KIND, namespace, name)
        self._require(cls.KIND, namespace, name)
        del self.objects[(cls.KIND, namespace, name)]


class FakeRecorder:
    def __init__(self):
        self.events: List[Tuple[str, str, str, str]] = []

    def event(self, obj, event_type, reason, message):
        self.events.append((obj.key, event_type, reason, message))


# ─────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────
def policy_doc(name="p1", namespace="ns", kind="Gateway", target="gw1", rule_set="rules", **meta) -> dict:
    return {
        "apiVersion": WAFPolicy.api_version(),
        "kind": WAFPolicy.KIND,
        "metadata": {"name": name, "namespace": namespace, **meta},
        "spec": {
            "targetRef": {"group": "gateway.networking.k8s.io", "kind": kind, "name": target},
            "ruleSet": {"name": rule_set},
            "failurePolicy": "fail",
        },
    }


def gateway_doc(name="gw1", namespace="ns") -> dict:
    return {
        "apiVersion": Gateway.api_version(),
        "kind": Gateway.KIND,
        "metadata": {"name": name, "namespace": namespace},
    }


def route_doc(name="r1", namespace="ns", parent_refs=None) -> dict:
    doc = {
        "apiVersion": HTTPRoute.api_version(),
        "kind": HTTPRoute.KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
    }
    if parent_refs is not None:
        doc["spec"]["parentRefs"] = parent_refs
    return doc
