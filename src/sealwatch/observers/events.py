# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    run_id: str       # correlates all events of one process invocation
    cluster: str      # configured cluster name
    component: str    # supervisor | bootstrap | cli
    ts: str = field(default_factory=_timestamp)   # ISO timestamp, stamped when the event is built

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(cluster: str, component: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
        "component": component,
    }


# ---------------------------------------------------------------------
# Supervisor ticks
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class TickStarted(BaseEvent):
    tick: int
    nodes: int

@dataclass(frozen=True)
class NodeProbed(BaseEvent):
    node_id: str
    state: str
    detail: Optional[str] = None

@dataclass(frozen=True)
class RemediationFailed(BaseEvent):
    node_id: str
    error: str

@dataclass(frozen=True)
class TickSummary(BaseEvent):
    tick: int
    unsealed: int
    remediated: int
    unreachable: int
    uninitialized: int
    failed: int


# ---------------------------------------------------------------------
# Unseal lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class UnsealAttempted(BaseEvent):
    node_id: str
    attempt: int
    max_attempts: int

@dataclass(frozen=True)
class UnsealSucceeded(BaseEvent):
    node_id: str
    attempts: int
    submitted: int

@dataclass(frozen=True)
class UnsealFailed(BaseEvent):
    node_id: str
    attempts: int
    error: str


# ---------------------------------------------------------------------
# Bootstrap lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapStepStarted(BaseEvent):
    step: str

@dataclass(frozen=True)
class BootstrapStepSucceeded(BaseEvent):
    step: str
    duration_ms: int
    skipped: bool = False

@dataclass(frozen=True)
class BootstrapStepFailed(BaseEvent):
    step: str
    error: str

@dataclass(frozen=True)
class ClusterInitialized(BaseEvent):
    node_id: str
    share_count: int
    threshold: int

@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    status: str          # "OK" | "FAILED"
    failed_step: Optional[str] = None
    error: Optional[str] = None
