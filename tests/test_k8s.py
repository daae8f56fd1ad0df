from __future__ import annotations

from unittest import mock

import pytest
from kubernetes.client.exceptions import ApiException

from k8s import (
    FINALIZER,
    OP_CREATED,
    OP_UPDATED,
    ConflictError,
    KubeStore,
    MissingIdentityError,
    NotFoundError,
    StoreError,
    create_or_update,
    ensure_finalizer,
    remove_finalizer,
)
from resources import DriverConfig, Engine, ObjectMeta, WAFPolicy
from support import policy_doc


def _engine(name="wafpolicy-p1", namespace="ns", rule_set="rules") -> Engine:
    return Engine(
        metadata=ObjectMeta(name=name, namespace=namespace),
        rule_set=rule_set,
        failure_policy="fail",
        driver=DriverConfig(image="img", mode="gateway", workload_selector={"k": "v"}, poll_interval_seconds=5),
    )


def test_create_when_missing(store) -> None:
    assert create_or_update(store, _engine()) == OP_CREATED
    assert store.raw("Engine", "ns", "wafpolicy-p1")["spec"]["ruleSet"]["name"] == "rules"


def test_update_copies_resource_version(store) -> None:
    create_or_update(store, _engine())
    current_rv = store.raw("Engine", "ns", "wafpolicy-p1")["metadata"]["resourceVersion"]
    desired = _engine(rule_set="other")

    assert create_or_update(store, desired) == OP_UPDATED
    assert desired.metadata.resource_version == current_rv
    assert store.raw("Engine", "ns", "wafpolicy-p1")["spec"]["ruleSet"]["name"] == "other"


def test_namespace_defaults(store) -> None:
    desired = _engine(namespace="")
    create_or_update(store, desired)
    assert desired.namespace == "default"
    assert store.raw("Engine", "default", "wafpolicy-p1") is not None


def test_missing_name_is_rejected(store) -> None:
    with pytest.raises(MissingIdentityError):
        create_or_update(store, _engine(name=""))
    assert store.calls == []


def test_missing_kind_is_rejected(store) -> None:
    class Kindless(Engine):
        KIND = ""

    desired = Kindless(**vars(_engine()))
    with pytest.raises(MissingIdentityError):
        create_or_update(store, desired)


def test_conflict_is_not_retried(store) -> None:
    create_or_update(store, _engine())
    store.fail("update", "Engine", ConflictError("modified"))

    with pytest.raises(ConflictError):
        create_or_update(store, _engine())
    assert len([c for c in store.calls if c[0] == "update"]) == 1


def test_get_failure_is_not_treated_as_missing(store) -> None:
    store.fail("get", "Engine")
    with pytest.raises(StoreError):
        create_or_update(store, _engine())
    assert not any(c[0] == "create" for c in store.calls)


def test_finalizer_add_and_remove(store) -> None:
    store.seed(policy_doc("p1", finalizers=["other/keep"]))
    policy = WAFPolicy.from_dict(store.raw("WAFPolicy", "ns", "p1"))

    policy = ensure_finalizer(store, policy)
    assert policy.metadata.finalizers == ["other/keep", FINALIZER]
    assert ensure_finalizer(store, policy) is policy  # already there, no write

    policy = remove_finalizer(store, policy)
    assert policy.metadata.finalizers == ["other/keep"]
    assert len([c for c in store.calls if c[0] == "patch"]) == 2


def test_finalizer_patch_with_stale_version_conflicts(store) -> None:
    store.seed(policy_doc("p1"))
    stale = WAFPolicy.from_dict(store.raw("WAFPolicy", "ns", "p1"))
    store.patch(WAFPolicy, "ns", "p1", {"metadata": {"labels": {"a": "b"}}})

    with pytest.raises(ConflictError):
        ensure_finalizer(store, stale)


@pytest.mark.parametrize(
    "status, expected",
    [(404, NotFoundError), (409, ConflictError), (500, StoreError), (403, StoreError)],
)
def test_kube_store_translates_api_errors(status, expected) -> None:
    api = mock.Mock()
    api.get_namespaced_custom_object.side_effect = ApiException(status=status, reason="x")
    store = KubeStore(api)

    with pytest.raises(expected):
        store.get(Engine, "ns", "e1")


def test_kube_store_passes_coordinates_and_deadline() -> None:
    api = mock.Mock()
    api.patch_namespaced_custom_object_status.return_value = policy_doc("p1")
    store = KubeStore(api, request_timeout=3.0)

    policy = store.patch_status(WAFPolicy, "ns", "p1", {"status": {"conditions": []}})

    assert policy.name == "p1"
    api.patch_namespaced_custom_object_status.assert_called_once_with(
        namespace="ns",
        name="p1",
        body={"status": {"conditions": []}},
        _request_timeout=3.0,
        group="waf.k8s.coraza.io",
        version="v1alpha1",
        plural="wafpolicies",
    )


def test_kube_store_update_sends_full_document() -> None:
    api = mock.Mock()
    engine = _engine()
    engine.metadata.resource_version = "42"
    api.replace_namespaced_custom_object.return_value = engine.to_dict()
    store = KubeStore(api)

    store.update(engine)

    body = api.replace_namespaced_custom_object.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "42"
    assert body["kind"] == "Engine"
    assert api.replace_namespaced_custom_object.call_args.kwargs["plural"] == "engines"
