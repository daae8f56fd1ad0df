from __future__ import annotations

import pytest

from config import TranslatorConfig
from reconcile import Reconciler
from support import TEST_IMAGE, FakeRecorder, FakeStore


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def translator() -> TranslatorConfig:
    return TranslatorConfig(
        default_wasm_image=TEST_IMAGE,
        default_poll_interval=15,
        envoy_cluster_name="test-cluster",
    )


@pytest.fixture
def reconciler(store, recorder, translator) -> Reconciler:
    return Reconciler(store, recorder, translator, clock=lambda: "2026-01-01T00:00:00Z")
