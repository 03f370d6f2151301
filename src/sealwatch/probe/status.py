# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/probe/status.py

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict

from sealwatch.config.models import NodeSpec
from sealwatch.vault.client import VaultClient
from sealwatch.vault.errors import VaultApiError, VaultError, VaultUnreachableError
from sealwatch.vault.models import NodeStatus, SealState

log = logging.getLogger("sealwatch")


class StatusProbe:
    """
    Turns a node's seal-status response into a NodeStatus.

    Unreachable nodes are a normal result, never an exception. Anything that
    answers but cannot be decoded is reported as SEALED.

    Unsealed nodes get a second call to sys/leader, so one probe can take up
    to twice the client timeout.
    """

    def __init__(self, client: VaultClient):
        self.client = client

    def probe(self, node: NodeSpec) -> NodeStatus:
        try:
            body = self.client.seal_status(node.address)
        except VaultUnreachableError as exc:
            log.debug("[probe] %s unreachable: %s", node.id, exc)
            return NodeStatus(node_id=node.id, state=SealState.UNREACHABLE, detail=str(exc))
        except VaultApiError as exc:
            log.warning("[probe] %s returned an error, assuming sealed: %s", node.id, exc)
            return NodeStatus(node_id=node.id, state=SealState.SEALED, detail=str(exc))

        status = _decode(node.id, body)
        if status.state is SealState.UNSEALED:
            status = self._with_leader(node, status)
        return status

    def _with_leader(self, node: NodeSpec, status: NodeStatus) -> NodeStatus:
        # second request: a probe of an unsealed node takes up to 2x the client timeout
        try:
            body = self.client.leader(node.address)
        except VaultError as exc:
            log.debug("[probe] leader lookup on %s failed: %s", node.id, exc)
            return status

        ha = body.get("ha_enabled")
        leader = body.get("leader_address")
        return replace(
            status,
            ha_enabled=ha if isinstance(ha, bool) else None,
            leader_address=leader if isinstance(leader, str) and leader else None,
        )


def _decode(node_id: str, body: Dict[str, Any]) -> NodeStatus:
    initialized = body.get("initialized")
    sealed = body.get("sealed")

    if not isinstance(initialized, bool) or not isinstance(sealed, bool):
        log.warning("[probe] %s sent an unexpected seal-status shape, assuming sealed", node_id)
        return NodeStatus(
            node_id=node_id,
            state=SealState.SEALED,
            detail=f"unparseable seal-status: keys={sorted(body)}",
        )

    progress = body.get("progress")
    progress = progress if isinstance(progress, int) else None
    version = body.get("version")

    if not initialized:
        state = SealState.UNINITIALIZED
    elif sealed:
        state = SealState.SEALED
    else:
        state = SealState.UNSEALED

    return NodeStatus(
        node_id=node_id,
        state=state,
        initialized=initialized,
        sealed=sealed,
        progress=progress,
        detail=f"vault {version}" if isinstance(version, str) and version else None,
    )
