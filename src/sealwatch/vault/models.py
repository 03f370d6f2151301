# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/vault/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple


class SealState(str, Enum):
    UNREACHABLE = "UNREACHABLE"
    UNINITIALIZED = "UNINITIALIZED"
    SEALED = "SEALED"
    UNSEALED = "UNSEALED"


@dataclass(frozen=True)
class NodeStatus:
    """
    Result of a single probe. Flags are None when they could not be determined.
    """
    node_id: str
    state: SealState
    initialized: Optional[bool] = None
    sealed: Optional[bool] = None
    ha_enabled: Optional[bool] = None
    leader_address: Optional[str] = None
    progress: Optional[int] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class KeyShareSet:
    """
    Ordered threshold key shares, in the order Vault generated them.

    Shares are opaque and are kept out of repr.
    """
    shares: Tuple[str, ...] = field(repr=False)
    threshold: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "shares", tuple(self.shares))
        if self.threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {self.threshold}")
        if len(self.shares) < self.threshold:
            raise ValueError(
                f"{len(self.shares)} shares available, threshold is {self.threshold}"
            )

    @classmethod
    def of(cls, shares: Sequence[str], threshold: int) -> "KeyShareSet":
        return cls(shares=tuple(shares), threshold=threshold)

    def for_unseal(self) -> Tuple[str, ...]:
        # Always the first `threshold` shares, in generation order.
        return self.shares[: self.threshold]

    def __len__(self) -> int:
        return len(self.shares)


@dataclass(frozen=True)
class InitResult:
    shares: KeyShareSet
    root_credential: str = field(repr=False)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
