from pathlib import Path
from typing import Dict, List, Optional

import pytest

from sealwatch.config.models import SealwatchConfig
from sealwatch.vault.errors import VaultApiError, VaultUnreachableError
from sealwatch.vault.models import InitResult, KeyShareSet


def addr(i: int) -> str:
    return f"http://vault-{i}:8200"


class FakeNode:
    def __init__(
        self,
        *,
        initialized=True,
        sealed=True,
        reachable=True,
        threshold=3,
        valid_shares: Optional[List[str]] = None,
        stuck=False,
        malformed=False,
    ):
        self.initialized = initialized
        self.sealed = sealed
        self.reachable = reachable
        self.threshold = threshold
        self.valid_shares = valid_shares
        self.stuck = stuck          # never unseals, whatever is submitted
        self.malformed = malformed  # seal-status body has the wrong shape
        self.progress = 0
        self.joined_via: Optional[str] = None


class FakeVault:
    """
    In-memory stand-in for VaultClient. Every call is recorded in ``calls``
    as a tuple ``(op, address, *args)``.
    """

    def __init__(self):
        self.nodes: Dict[str, FakeNode] = {}
        self.calls: List[tuple] = []
        self.fail_init = False

    def add(self, address: str, **kw) -> FakeNode:
        node = FakeNode(**kw)
        self.nodes[address] = node
        return node

    def ops(self, *names) -> List[tuple]:
        return [c for c in self.calls if c[0] in names]

    def _node(self, address: str) -> FakeNode:
        node = self.nodes[address]
        if not node.reachable:
            raise VaultUnreachableError(f"connection refused: {address}")
        return node

    # --- VaultClient surface ---
    def seal_status(self, address):
        self.calls.append(("seal_status", address))
        n = self._node(address)
        if n.malformed:
            return {"unexpected": "shape"}
        return {"initialized": n.initialized, "sealed": n.sealed, "progress": n.progress, "t": n.threshold}

    def leader(self, address):
        self.calls.append(("leader", address))
        self._node(address)
        return {"ha_enabled": True, "is_self": address == addr(1), "leader_address": addr(1)}

    def init(self, address, *, share_count, threshold):
        self.calls.append(("init", address, share_count, threshold))
        n = self._node(address)
        if self.fail_init:
            raise VaultApiError(500, "sys/init", ["storage unavailable"])
        if n.initialized:
            raise VaultApiError(400, "sys/init", ["Vault is already initialized"])
        n.initialized = True
        n.sealed = True
        n.threshold = threshold
        shares = [f"share-{i}" for i in range(1, share_count + 1)]
        return InitResult(shares=KeyShareSet.of(shares, threshold), root_credential="root-token")

    def unseal(self, address, share):
        self.calls.append(("unseal", address, share))
        n = self._node(address)
        if not n.sealed:
            return {"sealed": False, "progress": 0, "t": n.threshold}
        if n.valid_shares is not None and share not in n.valid_shares:
            n.progress = 0
            raise VaultApiError(400, "sys/unseal", ["invalid key"])
        n.progress += 1
        if n.progress >= n.threshold:
            n.progress = 0
            if not n.stuck:
                n.sealed = False
        return {"sealed": n.sealed, "progress": n.progress, "t": n.threshold}

    def join(self, address, leader_address):
        self.calls.append(("join", address, leader_address))
        n = self._node(address)
        n.initialized = True
        n.sealed = True
        n.joined_via = leader_address
        return {"joined": True}


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def kinds(self):
        return [e.__class__.__name__ for e in self.events]


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def capture() -> Capture:
    return Capture()


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory for a SealwatchConfig with N nodes, key files under tmp_path and zero delays."""

    def _make(n: int = 3, **bootstrap) -> SealwatchConfig:
        data = {
            "cluster_name": "test",
            "nodes": [
                {
                    "id": f"vault-{i}",
                    "address": addr(i),
                    "key_material_path": str(tmp_path / f"vault-{i}" / "unseal-keys.yaml"),
                }
                for i in range(1, n + 1)
            ],
            "supervisor": {
                "interval_seconds": 0.01,
                "unseal_retry": {"max_attempts": 3, "delay_seconds": 0},
            },
            "bootstrap": {
                "share_count": 5,
                "threshold": 3,
                "readiness_retry": {"max_attempts": 5, "delay_seconds": 0},
                **bootstrap,
            },
        }
        return SealwatchConfig.model_validate(data)

    return _make
