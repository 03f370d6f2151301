# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/vault/errors.py
from __future__ import annotations

from typing import List, Optional


class VaultError(RuntimeError):
    """Base class for Vault API failures."""


class VaultUnreachableError(VaultError):
    """Raised on transport failures or when the endpoint does not speak JSON."""


class VaultApiError(VaultError):
    """Raised when Vault answers with a non-2xx status."""

    def __init__(self, status: int, path: str, errors: Optional[List[str]] = None):
        self.status = status
        self.path = path
        self.errors = errors or []
        detail = "; ".join(self.errors) if self.errors else "no error detail"
        super().__init__(f"{path} returned {status}: {detail}")
