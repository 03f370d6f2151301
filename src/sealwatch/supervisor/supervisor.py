# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/supervisor/supervisor.py

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sealwatch.config.models import NodeSpec
from sealwatch.keys.store import KeyMaterialError, KeyMaterialStore
from sealwatch.observers.dispatcher import EventBus
from sealwatch.observers.events import (
    new_ctx,
    TickStarted,
    NodeProbed,
    RemediationFailed,
    TickSummary,
)
from sealwatch.probe.status import StatusProbe
from sealwatch.unseal.executor import UnsealExecutor
from sealwatch.vault.models import RetryPolicy, SealState

log = logging.getLogger("sealwatch")


@dataclass
class NodeOutcome:
    node_id: str
    status: str                 # "UNSEALED" | "UNREACHABLE" | "UNINITIALIZED" | "REMEDIATED" | "FAILED"
    error: Optional[str] = None


@dataclass
class TickReport:
    tick: int
    outcomes: List[NodeOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def summary(self) -> str:
        return (
            f"UNSEALED={self.count('UNSEALED')} REMEDIATED={self.count('REMEDIATED')} "
            f"UNREACHABLE={self.count('UNREACHABLE')} UNINITIALIZED={self.count('UNINITIALIZED')} "
            f"FAILED={self.count('FAILED')}"
        )


class ClusterSupervisor:
    """
    Watches every configured node and unseals the ones that come back sealed.

    A tick probes the whole node set and finishes every remediation, retries
    included, before it returns; the next tick never starts earlier. With
    ``max_workers > 1`` nodes within a tick are handled on a bounded thread
    pool.
    """

    def __init__(
        self,
        nodes: Sequence[NodeSpec],
        *,
        probe: StatusProbe,
        store: KeyMaterialStore,
        executor: UnsealExecutor,
        policy: RetryPolicy,
        interval_seconds: float,
        max_workers: int = 1,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.nodes = tuple(nodes)
        self.probe = probe
        self.store = store
        self.executor = executor
        self.policy = policy
        self.interval_seconds = interval_seconds
        self.max_workers = max_workers
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(cluster="vault", component="supervisor")
        self._ticks = 0

    # -----------------------
    # Per-node step
    # -----------------------
    def remediate(self, node: NodeSpec) -> NodeOutcome:
        """Probe one node and unseal it if needed. Never raises."""
        try:
            return self._remediate(node)
        except Exception as exc:
            log.exception("[supervisor] unexpected error while handling %s", node.id)
            self.bus.emit(RemediationFailed(node_id=node.id, error=str(exc), **self.run_ctx))
            return NodeOutcome(node_id=node.id, status="FAILED", error=str(exc))

    def _remediate(self, node: NodeSpec) -> NodeOutcome:
        status = self.probe.probe(node)
        self.bus.emit(NodeProbed(node_id=node.id, state=status.state.value, detail=status.detail, **self.run_ctx))

        if status.state is SealState.UNREACHABLE:
            log.info("[supervisor] %s is unreachable, will check again next tick", node.id)
            return NodeOutcome(node_id=node.id, status="UNREACHABLE")

        if status.state is SealState.UNSEALED:
            log.info("[supervisor] %s is unsealed", node.id)
            return NodeOutcome(node_id=node.id, status="UNSEALED")

        if status.state is SealState.UNINITIALIZED:
            log.warning("[supervisor] %s is not initialized; run `sealwatch bootstrap` first", node.id)
            return NodeOutcome(node_id=node.id, status="UNINITIALIZED")

        log.warning("[supervisor] %s is SEALED, attempting to unseal", node.id)
        try:
            shares = self.store.load(node)
        except KeyMaterialError as exc:
            log.error("[supervisor] cannot unseal %s: %s", node.id, exc)
            self.bus.emit(RemediationFailed(node_id=node.id, error=str(exc), **self.run_ctx))
            return NodeOutcome(node_id=node.id, status="FAILED", error=str(exc))

        result = self.executor.unseal(node, shares, self.policy)
        if result.ok:
            return NodeOutcome(node_id=node.id, status="REMEDIATED")
        return NodeOutcome(node_id=node.id, status="FAILED", error=result.error)

    # -----------------------
    # Loop
    # -----------------------
    def tick(self) -> TickReport:
        self._ticks += 1
        report = TickReport(tick=self._ticks)
        self.bus.emit(TickStarted(tick=report.tick, nodes=len(self.nodes), **self.run_ctx))

        if self.max_workers > 1 and len(self.nodes) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sealwatch") as pool:
                report.outcomes.extend(pool.map(self.remediate, self.nodes))
        else:
            for node in self.nodes:
                report.outcomes.append(self.remediate(node))

        log.debug("[supervisor] tick %d: %s", report.tick, report.summary())
        self.bus.emit(
            TickSummary(
                tick=report.tick,
                unsealed=report.count("UNSEALED"),
                remediated=report.count("REMEDIATED"),
                unreachable=report.count("UNREACHABLE"),
                uninitialized=report.count("UNINITIALIZED"),
                failed=report.count("FAILED"),
                **self.run_ctx,
            )
        )
        return report

    def run(self, stop_event: threading.Event, max_ticks: Optional[int] = None) -> int:
        """
        Tick until ``stop_event`` is set (checked between ticks only) or
        ``max_ticks`` ticks have run. Returns the number of ticks run.
        """
        log.info(
            "[supervisor] watching %d nodes every %ss",
            len(self.nodes), self.interval_seconds,
        )
        ran = 0
        while not stop_event.is_set():
            self.tick()
            ran += 1
            if max_ticks is not None and ran >= max_ticks:
                break
            stop_event.wait(self.interval_seconds)
        log.info("[supervisor] stopped after %d ticks", ran)
        return ran
