# resources.py
"""Typed views of the objects the controller reads and writes.

Each variant knows its API coordinates and converts to/from the plain JSON
documents the API server speaks. Only the fields the controller touches are
modelled; everything else in a document is ignored on read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

WAF_GROUP = "waf.k8s.coraza.io"
WAF_VERSION = "v1alpha1"
GATEWAY_GROUP = "gateway.networking.k8s.io"
GATEWAY_VERSION = "v1"

ENGINE_NAME_PREFIX = "wafpolicy-"
GATEWAY_NAME_LABEL = "gateway.networking.k8s.io/gateway-name"

FAILURE_POLICY_FAIL = "fail"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    deletion_timestamp: Optional[str] = None
    finalizers: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    owner_references: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, meta: Optional[dict]) -> "ObjectMeta":
        meta = meta or {}
        return cls(
            name=meta.get("name", "") or "",
            namespace=meta.get("namespace", "") or "",
            uid=meta.get("uid", "") or "",
            generation=int(meta.get("generation", 0) or 0),
            resource_version=meta.get("resourceVersion", "") or "",
            deletion_timestamp=meta.get("deletionTimestamp"),
            finalizers=list(meta.get("finalizers", []) or []),
            labels=dict(meta.get("labels", {}) or {}),
            owner_references=[dict(o) for o in meta.get("ownerReferences", []) or []],
        )

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            out["namespace"] = self.namespace
        if self.uid:
            out["uid"] = self.uid
        if self.generation:
            out["generation"] = self.generation
        if self.resource_version:
            out["resourceVersion"] = self.resource_version
        if self.deletion_timestamp:
            out["deletionTimestamp"] = self.deletion_timestamp
        if self.finalizers:
            out["finalizers"] = list(self.finalizers)
        if self.labels:
            out["labels"] = dict(self.labels)
        if self.owner_references:
            out["ownerReferences"] = [dict(o) for o in self.owner_references]
        return out


@dataclass
class Condition:
    type: str
    status: str
    reason: str
    message: str = ""
    observed_generation: int = 0
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "Condition":
        return cls(
            type=d.get("type", ""),
            status=d.get("status", CONDITION_UNKNOWN),
            reason=d.get("reason", ""),
            message=d.get("message", "") or "",
            observed_generation=int(d.get("observedGeneration", 0) or 0),
            last_transition_time=d.get("lastTransitionTime", "") or "",
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
            "lastTransitionTime": self.last_transition_time,
        }


class Resource:
    """Base for the closed set of variants the store client understands."""

    GROUP = ""
    VERSION = ""
    KIND = ""
    PLURAL = ""

    metadata: ObjectMeta

    @classmethod
    def api_version(cls) -> str:
        return f"{cls.GROUP}/{cls.VERSION}"

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @classmethod
    def from_dict(cls, obj: dict) -> "Resource":
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError


# ─────────────────────────────────────────────
# WAFPolicy
# ─────────────────────────────────────────────
@dataclass
class TargetRef:
    kind: str
    name: str
    group: str = GATEWAY_GROUP

    def matches(self, kind: str, name: str) -> bool:
        return self.kind == kind and self.name == name


@dataclass
class WAFPolicy(Resource):
    GROUP = WAF_GROUP
    VERSION = WAF_VERSION
    KIND = "WAFPolicy"
    PLURAL = "wafpolicies"

    metadata: ObjectMeta
    target_ref: TargetRef
    rule_set: str
    failure_policy: str = FAILURE_POLICY_FAIL
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, obj: dict) -> "WAFPolicy":
        spec = obj.get("spec", {}) or {}
        tref = spec.get("targetRef", {}) or {}
        status = obj.get("status", {}) or {}
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata")),
            target_ref=TargetRef(
                kind=tref.get("kind", "") or "",
                name=tref.get("name", "") or "",
                group=tref.get("group", GATEWAY_GROUP) or GATEWAY_GROUP,
            ),
            rule_set=((spec.get("ruleSet", {}) or {}).get("name", "") or ""),
            failure_policy=spec.get("failurePolicy") or FAILURE_POLICY_FAIL,
            conditions=[Condition.from_dict(c) for c in status.get("conditions", []) or []],
        )

    def to_dict(self) -> dict:
        out = {
            "apiVersion": self.api_version(),
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": {
                "targetRef": {
                    "group": self.target_ref.group,
                    "kind": self.target_ref.kind,
                    "name": self.target_ref.name,
                },
                "ruleSet": {"name": self.rule_set},
                "failurePolicy": self.failure_policy,
            },
        }
        if self.conditions:
            out["status"] = {"conditions": [c.to_dict() for c in self.conditions]}
        return out


# ─────────────────────────────────────────────
# Engine
# ─────────────────────────────────────────────
@dataclass
class DriverConfig:
    image: str
    mode: str
    workload_selector: Dict[str, str]
    poll_interval_seconds: int

    def to_dict(self) -> dict:
        return {
            "istio": {
                "wasm": {
                    "image": self.image,
                    "mode": self.mode,
                    "workloadSelector": {"matchLabels": dict(self.workload_selector)},
                    "ruleSetCacheServer": {"pollIntervalSeconds": self.poll_interval_seconds},
                }
            }
        }

    @classmethod
    def from_dict(cls, driver: Optional[dict]) -> "DriverConfig":
        wasm = (((driver or {}).get("istio", {}) or {}).get("wasm", {}) or {})
        selector = (wasm.get("workloadSelector", {}) or {}).get("matchLabels", {}) or {}
        cache = wasm.get("ruleSetCacheServer", {}) or {}
        return cls(
            image=wasm.get("image", "") or "",
            mode=wasm.get("mode", "") or "",
            workload_selector=dict(selector),
            poll_interval_seconds=int(cache.get("pollIntervalSeconds", 0) or 0),
        )


@dataclass
class Engine(Resource):
    GROUP = WAF_GROUP
    VERSION = WAF_VERSION
    KIND = "Engine"
    PLURAL = "engines"

    metadata: ObjectMeta
    rule_set: str
    failure_policy: str
    driver: DriverConfig

    @classmethod
    def from_dict(cls, obj: dict) -> "Engine":
        spec = obj.get("spec", {}) or {}
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata")),
            rule_set=((spec.get("ruleSet", {}) or {}).get("name", "") or ""),
            failure_policy=spec.get("failurePolicy") or FAILURE_POLICY_FAIL,
            driver=DriverConfig.from_dict(spec.get("driver")),
        )

    def spec_dict(self) -> dict:
        return {
            "ruleSet": {
                "apiVersion": f"{WAF_GROUP}/{WAF_VERSION}",
                "kind": "RuleSet",
                "name": self.rule_set,
            },
            "failurePolicy": self.failure_policy,
            "driver": self.driver.to_dict(),
        }

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version(),
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec_dict(),
        }

    def controller_owner(self) -> Optional[Dict[str, Any]]:
        for ref in self.metadata.owner_references:
            if ref.get("controller"):
                return ref
        return None


def engine_name_for(policy_name: str) -> str:
    return ENGINE_NAME_PREFIX + policy_name


# ─────────────────────────────────────────────
# Gateway API targets (read-only)
# ─────────────────────────────────────────────
@dataclass
class Gateway(Resource):
    GROUP = GATEWAY_GROUP
    VERSION = GATEWAY_VERSION
    KIND = "Gateway"
    PLURAL = "gateways"

    metadata: ObjectMeta

    @classmethod
    def from_dict(cls, obj: dict) -> "Gateway":
        return cls(metadata=ObjectMeta.from_dict(obj.get("metadata")))

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version(),
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class HTTPRoute(Resource):
    GROUP = GATEWAY_GROUP
    VERSION = GATEWAY_VERSION
    KIND = "HTTPRoute"
    PLURAL = "httproutes"

    metadata: ObjectMeta
    # Kept as raw JSON values: a parentRef that is not an object is a
    # resolution outcome, not a parse error.
    parent_refs: Optional[List[Any]] = None

    @classmethod
    def from_dict(cls, obj: dict) -> "HTTPRoute":
        spec = obj.get("spec", {}) or {}
        refs = spec.get("parentRefs")
        return cls(
            metadata=ObjectMeta.from_dict(obj.get("metadata")),
            parent_refs=list(refs) if isinstance(refs, list) else None,
        )

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {
            "apiVersion": self.api_version(),
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": {},
        }
        if self.parent_refs is not None:
            out["spec"]["parentRefs"] = list(self.parent_refs)
        return out
