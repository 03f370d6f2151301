# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/unseal/executor.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sealwatch.config.models import NodeSpec
from sealwatch.observers.dispatcher import EventBus
from sealwatch.observers.events import (
    new_ctx,
    UnsealAttempted,
    UnsealSucceeded,
    UnsealFailed,
)
from sealwatch.vault.client import VaultClient
from sealwatch.vault.errors import VaultError
from sealwatch.vault.models import KeyShareSet, RetryPolicy

log = logging.getLogger("sealwatch")


@dataclass
class UnsealOutcome:
    node_id: str
    status: str                 # "OK" | "FAILED"
    attempts: int = 0
    submitted: int = 0          # shares submitted across all attempts
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "OK"


class UnsealExecutor:
    """
    Submits the first ``threshold`` shares to a sealed node, one unseal call
    per share, stopping as soon as Vault reports the node unsealed.

    A pass that ends with the node still sealed (or with a failed call) counts
    as one attempt; the whole pass is repeated after ``policy.delay_seconds``
    up to ``policy.max_attempts`` times. Vault tracks its own progress, so no
    state is carried between attempts.
    """

    def __init__(
        self,
        client: VaultClient,
        *,
        sleep: Callable[[float], None] = time.sleep,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.client = client
        self.sleep = sleep
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(cluster="vault", component="unseal")

    def unseal(self, node: NodeSpec, shares: KeyShareSet, policy: RetryPolicy) -> UnsealOutcome:
        outcome = UnsealOutcome(node_id=node.id, status="FAILED")
        keys = shares.for_unseal()

        for attempt in range(1, policy.max_attempts + 1):
            outcome.attempts = attempt
            self.bus.emit(
                UnsealAttempted(node_id=node.id, attempt=attempt, max_attempts=policy.max_attempts, **self.run_ctx)
            )
            try:
                unsealed = self._submit_pass(node, keys, outcome)
            except VaultError as exc:
                outcome.error = str(exc)
                log.warning("[unseal] %s attempt %d/%d failed: %s", node.id, attempt, policy.max_attempts, exc)
            else:
                if unsealed:
                    outcome.status = "OK"
                    outcome.error = None
                    log.info("[unseal] %s unsealed (attempt %d, %d shares submitted)", node.id, attempt, outcome.submitted)
                    self.bus.emit(
                        UnsealSucceeded(node_id=node.id, attempts=attempt, submitted=outcome.submitted, **self.run_ctx)
                    )
                    return outcome
                outcome.error = f"still sealed after submitting {len(keys)} shares"
                log.warning("[unseal] %s attempt %d/%d: %s", node.id, attempt, policy.max_attempts, outcome.error)

            if attempt < policy.max_attempts:
                self.sleep(policy.delay_seconds)

        log.error("[unseal] failed to unseal %s after %d attempts: %s", node.id, outcome.attempts, outcome.error)
        self.bus.emit(
            UnsealFailed(node_id=node.id, attempts=outcome.attempts, error=outcome.error or "", **self.run_ctx)
        )
        return outcome

    def _submit_pass(self, node: NodeSpec, keys: tuple, outcome: UnsealOutcome) -> bool:
        for idx, key in enumerate(keys, start=1):
            body = self.client.unseal(node.address, key)
            outcome.submitted += 1
            sealed = body.get("sealed")
            log.debug(
                "[unseal] %s share %d/%d submitted, progress=%s sealed=%s",
                node.id, idx, len(keys), body.get("progress"), sealed,
            )
            if sealed is False:
                return True
        return False
