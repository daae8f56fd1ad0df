# app.py
from __future__ import annotations

import logging
import threading

from kubernetes import client, config

from config import ControllerSettings, load_settings
from k8s import KubeStore
from observe.runtime import start_watchers
from recorder import EventRecorder
from reconcile import Reconciler
from workqueue import ItemExponentialFailureRateLimiter, WorkQueue, run_worker

log = logging.getLogger("wafpolicy-controller")


def load_kube() -> None:
    try:
        config.load_incluster_config()
        log.info("using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        log.info("using kubeconfig (local)")


def build(settings: ControllerSettings, api: client.CustomObjectsApi, corev1: client.CoreV1Api):
    store = KubeStore(api, request_timeout=settings.request_timeout_seconds)
    recorder = EventRecorder(corev1)
    reconciler = Reconciler(store, recorder, settings.translator)
    queue = WorkQueue(
        ItemExponentialFailureRateLimiter(
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        )
    )
    return store, reconciler, queue


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_kube()

    api = client.CustomObjectsApi()
    corev1 = client.CoreV1Api()
    store, reconciler, queue = build(settings, api, corev1)

    stop_event = threading.Event()
    watchers = start_watchers(stop_event, api, store, settings.watch_namespace, queue.add)

    workers = []
    for i in range(settings.workers):
        t = threading.Thread(
            target=run_worker,
            args=(queue, reconciler.reconcile),
            name=f"worker-{i}",
            daemon=True,
        )
        t.start()
        workers.append(t)

    log.info(
        "controller started: workers=%d namespace=%s image=%s",
        settings.workers,
        settings.watch_namespace or "*",
        settings.translator.default_wasm_image,
    )

    try:
        while any(t.is_alive() for t in workers):
            stop_event.wait(1.0)
    except KeyboardInterrupt:
        log.info("shutting down")
    finally:
        stop_event.set()
        queue.shutdown()
        for t in workers + watchers:
            t.join(timeout=5)


if __name__ == "__main__":
    main()
