# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/vault/client.py

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from sealwatch.vault.errors import VaultApiError, VaultUnreachableError
from sealwatch.vault.models import InitResult, KeyShareSet

log = logging.getLogger("sealwatch")


class VaultClient:
    """
    Minimal Vault HTTP API wrapper covering the sys/ endpoints sealwatch needs:
      - seal-status
      - leader
      - init
      - unseal
      - storage/raft/join

    Every call is bounded by ``timeout_seconds``. The node address is passed per
    call so one client serves the whole cluster.
    """

    def __init__(self, *, timeout_seconds: float = 5.0, verify_tls: bool = True):
        self.timeout_seconds = timeout_seconds
        self.verify_tls = verify_tls

    # -----------------------
    # HTTP helpers
    # -----------------------
    @staticmethod
    def _url(address: str, path: str) -> str:
        return f"{address.rstrip('/')}/v1/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        address: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = self._url(address, path)
        try:
            r = requests.request(
                method,
                url,
                json=payload,
                verify=self.verify_tls,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise VaultUnreachableError(f"{method} {url} failed: {exc}") from exc

        try:
            body = r.json()
        except ValueError as exc:
            raise VaultUnreachableError(
                f"{method} {url} returned a non-JSON body (status {r.status_code})"
            ) from exc

        if r.status_code < 200 or r.status_code >= 300:
            errors = body.get("errors") if isinstance(body, dict) else None
            raise VaultApiError(r.status_code, path, [str(e) for e in errors or []])

        if not isinstance(body, dict):
            raise VaultApiError(r.status_code, path, [f"expected a JSON object, got {type(body).__name__}"])
        return body

    # -----------------------
    # Status
    # -----------------------
    def seal_status(self, address: str) -> Dict[str, Any]:
        return self._request("GET", address, "sys/seal-status")

    def leader(self, address: str) -> Dict[str, Any]:
        return self._request("GET", address, "sys/leader")

    # -----------------------
    # Operations
    # -----------------------
    def init(self, address: str, *, share_count: int, threshold: int) -> InitResult:
        body = self._request(
            "PUT",
            address,
            "sys/init",
            {"secret_shares": share_count, "secret_threshold": threshold},
        )
        keys = body.get("keys_base64") or body.get("keys") or []
        root_token = body.get("root_token")
        if not isinstance(keys, list) or not root_token:
            raise VaultApiError(200, "sys/init", ["response is missing keys or root_token"])
        try:
            shares = KeyShareSet.of([str(k) for k in keys], threshold)
        except ValueError as exc:
            raise VaultApiError(200, "sys/init", [str(exc)]) from exc
        log.debug("sys/init on %s returned %d shares", address, len(shares))
        return InitResult(shares=shares, root_credential=str(root_token))

    def unseal(self, address: str, share: str) -> Dict[str, Any]:
        return self._request("PUT", address, "sys/unseal", {"key": share})

    def join(self, address: str, leader_address: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            address,
            "sys/storage/raft/join",
            {"leader_api_addr": leader_address},
        )
