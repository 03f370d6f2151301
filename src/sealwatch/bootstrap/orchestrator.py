# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/bootstrap/orchestrator.py

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sealwatch.bootstrap.errors import (
    AlreadyInitializedError,
    BootstrapCancelled,
    BootstrapError,
    InitializeError,
    JoinError,
    KeyMaterialStepError,
    NotInitializedError,
    ReadinessTimeoutError,
    UnsealStepError,
)
from sealwatch.config.models import NodeSpec, SealwatchConfig
from sealwatch.keys.store import KeyMaterialError, KeyMaterialStore
from sealwatch.observers.dispatcher import EventBus
from sealwatch.observers.events import (
    new_ctx,
    BootstrapStepStarted,
    BootstrapStepSucceeded,
    BootstrapStepFailed,
    ClusterInitialized,
    BootstrapSummary,
)
from sealwatch.probe.status import StatusProbe
from sealwatch.unseal.executor import UnsealExecutor
from sealwatch.utils.retry import RetryError, retry
from sealwatch.vault.client import VaultClient
from sealwatch.vault.errors import VaultError
from sealwatch.vault.models import InitResult, KeyShareSet, NodeStatus, SealState

log = logging.getLogger("sealwatch")


class _NodeNotReady(Exception):
    pass


@dataclass
class BootstrapStep:
    name: str
    run: Callable[[], bool]     # returns True when the step had nothing to do


@dataclass
class StepResult:
    name: str
    status: str                 # "OK" | "SKIPPED" | "FAILED"
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class BootstrapReport:
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s.status != "FAILED" for s in self.steps)

    def names(self) -> List[str]:
        return [s.name for s in self.steps]


class BootstrapOrchestrator:
    """
    One-shot cluster bring-up, leader first:

      wait-ready → initialize → persist → unseal-leader →
      join:<follower> → unseal:<follower> (per follower, in configured order)

    Each step must finish before the next begins. Any failure raises a
    BootstrapError naming the step; nothing is retried at the sequence level.

    With ``resume=True`` the leader must already be initialized: initialize
    and persist are replaced by loading the leader's stored key material,
    and the unseal/join steps run again. Those steps check the node state
    first, so repeating them is safe.
    """

    def __init__(
        self,
        config: SealwatchConfig,
        *,
        client: VaultClient,
        probe: StatusProbe,
        store: KeyMaterialStore,
        executor: UnsealExecutor,
        sleep: Callable[[float], None] = time.sleep,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.client = client
        self.probe = probe
        self.store = store
        self.executor = executor
        self.sleep = sleep
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(cluster=config.cluster_name, component="bootstrap")
        self.stop_event = stop_event or threading.Event()
        self._init_result: Optional[InitResult] = None
        self._shares: Optional[KeyShareSet] = None

    @property
    def leader(self) -> NodeSpec:
        return self.config.leader

    # -----------------------
    # Pipeline
    # -----------------------
    def plan(self, *, resume: bool = False) -> List[BootstrapStep]:
        steps: List[BootstrapStep] = []
        if resume:
            steps.append(BootstrapStep("wait-ready", lambda: self._wait_ready(expect_initialized=True)))
            steps.append(BootstrapStep("load-keys", self._load_keys))
        else:
            steps.append(BootstrapStep("wait-ready", lambda: self._wait_ready(expect_initialized=False)))
            steps.append(BootstrapStep("initialize", self._initialize))
            steps.append(BootstrapStep("persist", self._persist))

        steps.append(BootstrapStep("unseal-leader", lambda: self._unseal("unseal-leader", self.leader)))

        for node in self.config.followers:
            steps.append(BootstrapStep(f"join:{node.id}", lambda n=node: self._join(n)))
            steps.append(BootstrapStep(f"unseal:{node.id}", lambda n=node: self._unseal(f"unseal:{n.id}", n)))
        return steps

    def run(self, *, resume: bool = False) -> BootstrapReport:
        report = BootstrapReport()
        steps = self.plan(resume=resume)
        log.info("[bootstrap] plan: %s", " → ".join(s.name for s in steps))

        try:
            for step in steps:
                if self.stop_event.is_set():
                    raise BootstrapCancelled(step.name, "shutdown requested before step started")
                self._run_step(step, report)
        except BootstrapError as exc:
            self.bus.emit(BootstrapSummary(status="FAILED", failed_step=exc.step, error=exc.message, **self.run_ctx))
            raise

        self.bus.emit(BootstrapSummary(status="OK", **self.run_ctx))
        log.info("[bootstrap] cluster is initialized and unsealed")
        return report

    def _run_step(self, step: BootstrapStep, report: BootstrapReport) -> None:
        log.info("[bootstrap] ▶ %s", step.name)
        self.bus.emit(BootstrapStepStarted(step=step.name, **self.run_ctx))
        t0 = time.time()
        try:
            skipped = bool(step.run())
        except BootstrapError as exc:
            report.steps.append(StepResult(step.name, "FAILED", error=exc.message))
            self.bus.emit(BootstrapStepFailed(step=exc.step, error=exc.message, **self.run_ctx))
            log.error("[bootstrap] ✖ %s: %s", exc.step, exc.message)
            raise

        duration_ms = int((time.time() - t0) * 1000)
        report.steps.append(StepResult(step.name, "SKIPPED" if skipped else "OK", duration_ms))
        self.bus.emit(BootstrapStepSucceeded(step=step.name, duration_ms=duration_ms, skipped=skipped, **self.run_ctx))
        log.info("[bootstrap] ✔ %s%s", step.name, " (nothing to do)" if skipped else "")

    # -----------------------
    # Steps
    # -----------------------
    def _wait_ready(self, *, expect_initialized: bool) -> bool:
        spec = self.config.bootstrap.readiness_retry
        leader = self.leader

        def check_leader() -> NodeStatus:
            status = self.probe.probe(leader)
            if status.state is SealState.UNREACHABLE:
                raise _NodeNotReady(f"{leader.id} is unreachable")
            if status.initialized is None:
                raise _NodeNotReady(f"{leader.id} status is undetermined: {status.detail}")
            if status.initialized and not expect_initialized:
                raise AlreadyInitializedError(
                    "precondition",
                    f"{leader.id} is already initialized; reset the cluster before "
                    "bootstrapping again, or use --resume to finish an interrupted run",
                )
            if not status.initialized and expect_initialized:
                raise NotInitializedError(
                    "precondition",
                    f"{leader.id} is not initialized; run bootstrap without --resume",
                )
            return status

        def on_retry(attempt: int, exc: Exception) -> None:
            log.info("[bootstrap] waiting for %s (attempt %d/%d): %s", leader.id, attempt, spec.max_attempts, exc)

        try:
            status = retry(
                retries=spec.max_attempts,
                delay=spec.delay_seconds,
                retry_on=(_NodeNotReady,),
                on_retry=on_retry,
                sleep=self.sleep,
            )(check_leader)()
        except RetryError as exc:
            raise ReadinessTimeoutError(
                "wait-ready",
                f"{leader.id} at {leader.address} not ready after {spec.max_attempts} attempts; "
                "check connectivity and the node's logs",
            ) from exc

        log.info("[bootstrap] %s is ready (%s)", leader.id, status.state.value)
        return False

    def _initialize(self) -> bool:
        settings = self.config.bootstrap
        try:
            result = self.client.init(
                self.leader.address,
                share_count=settings.share_count,
                threshold=settings.threshold,
            )
        except VaultError as exc:
            raise InitializeError("initialize", f"initialize on {self.leader.id} failed: {exc}") from exc

        self._init_result = result
        self._shares = result.shares
        self.bus.emit(
            ClusterInitialized(
                node_id=self.leader.id,
                share_count=len(result.shares),
                threshold=result.shares.threshold,
                **self.run_ctx,
            )
        )
        log.info(
            "[bootstrap] %s initialized with %d shares, threshold %d",
            self.leader.id, len(result.shares), result.shares.threshold,
        )
        return False

    def _persist(self) -> bool:
        result = self._init_result
        if result is None:
            raise KeyMaterialStepError("persist", "nothing to persist; initialize did not run")
        # the snapshot is the only copy of the root credential, so it goes first
        try:
            self.store.write_snapshot(self.config.init_snapshot_path, result)
            for node in self.config.nodes:
                self.store.save(node, result.shares)
        except OSError as exc:
            raise KeyMaterialStepError("persist", f"could not write key material: {exc}") from exc
        return False

    def _load_keys(self) -> bool:
        try:
            self._shares = self.store.load(self.leader)
        except KeyMaterialError as exc:
            raise KeyMaterialStepError("load-keys", str(exc)) from exc
        return False

    def _join(self, node: NodeSpec) -> bool:
        step = f"join:{node.id}"
        status = self.probe.probe(node)

        if status.state is SealState.UNREACHABLE:
            raise JoinError(step, f"{node.id} is unreachable at {node.address}")
        if status.initialized:
            log.info("[bootstrap] %s is already part of the cluster, skipping join", node.id)
            return True
        if status.state is not SealState.UNINITIALIZED:
            raise JoinError(step, f"cannot determine whether {node.id} can join: {status.detail}")

        leader_addr = self.leader.api_join_address
        try:
            body = self.client.join(node.address, leader_addr)
        except VaultError as exc:
            raise JoinError(step, f"{node.id} could not join via {leader_addr}: {exc}") from exc
        if body.get("joined") is not True:
            raise JoinError(step, f"{node.id} did not join via {leader_addr}: {body}")

        log.info("[bootstrap] %s joined the cluster via %s", node.id, leader_addr)
        return False

    def _unseal(self, step: str, node: NodeSpec) -> bool:
        if self._shares is None:
            raise UnsealStepError(step, "no key material available")

        status = self.probe.probe(node)
        if status.state is SealState.UNSEALED:
            log.info("[bootstrap] %s is already unsealed", node.id)
            return True

        outcome = self.executor.unseal(node, self._shares, self.config.bootstrap_unseal_retry())
        if not outcome.ok:
            raise UnsealStepError(step, f"{node.id} is still sealed after {outcome.attempts} attempts: {outcome.error}")
        return False
