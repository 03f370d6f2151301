# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/config/models.py

from typing import Dict, List, Optional
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sealwatch.vault.models import RetryPolicy


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class NodeSpec(_Frozen):
    id: str                          # logical node name, e.g. vault-1
    address: str                     # API address, e.g. http://vault-1:8200
    key_material_path: Path          # per-node unseal key file
    join_address: Optional[str] = None   # address followers use to reach this node, if not `address`

    @field_validator("address", "join_address")
    @classmethod
    def _http_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"address must start with http:// or https://, got {v!r}")
        return v.rstrip("/")

    @property
    def api_join_address(self) -> str:
        return self.join_address or self.address


class RetrySpec(_Frozen):
    max_attempts: int = Field(default=3, ge=1)
    delay_seconds: float = Field(default=5.0, ge=0)

    def policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, delay_seconds=self.delay_seconds)


class SupervisorSettings(_Frozen):
    interval_seconds: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=1, ge=1)
    unseal_retry: RetrySpec = RetrySpec(max_attempts=3, delay_seconds=5.0)


class BootstrapSettings(_Frozen):
    share_count: int = Field(default=5, ge=1)
    threshold: int = Field(default=3, ge=1)
    readiness_retry: RetrySpec = RetrySpec(max_attempts=30, delay_seconds=2.0)
    unseal_retry: Optional[RetrySpec] = None   # falls back to supervisor.unseal_retry
    snapshot_path: Optional[Path] = None       # DR snapshot of the init result; see SealwatchConfig.init_snapshot_path

    @model_validator(mode="after")
    def _threshold_within_shares(self) -> "BootstrapSettings":
        if self.threshold > self.share_count:
            raise ValueError(
                f"threshold ({self.threshold}) cannot exceed share_count ({self.share_count})"
            )
        return self


class SealwatchConfig(_Frozen):
    cluster_name: str = "vault"
    nodes: List[NodeSpec]
    request_timeout_seconds: float = Field(default=5.0, gt=0)
    verify_tls: bool = True
    log_dir: Optional[Path] = None
    supervisor: SupervisorSettings = SupervisorSettings()
    bootstrap: BootstrapSettings = BootstrapSettings()

    @field_validator("nodes")
    @classmethod
    def _unique_nodes(cls, v: List[NodeSpec]) -> List[NodeSpec]:
        if not v:
            raise ValueError("at least one node must be configured")
        seen = set()
        for n in v:
            if n.id in seen:
                raise ValueError(f"duplicate node id: {n.id}")
            seen.add(n.id)
        return v

    @property
    def leader(self) -> NodeSpec:
        """The first configured node; bootstrap initializes and joins through it."""
        return self.nodes[0]

    @property
    def followers(self) -> List[NodeSpec]:
        return list(self.nodes[1:])

    def by_id(self) -> Dict[str, NodeSpec]:
        return {n.id: n for n in self.nodes}

    @property
    def init_snapshot_path(self) -> Path:
        """Where bootstrap writes the init result; defaults to vault-init-keys.json beside the leader's keys."""
        if self.bootstrap.snapshot_path:
            return self.bootstrap.snapshot_path
        return Path(self.leader.key_material_path).parent / "vault-init-keys.json"

    def bootstrap_unseal_retry(self) -> RetryPolicy:
        spec = self.bootstrap.unseal_retry or self.supervisor.unseal_retry
        return spec.policy()
