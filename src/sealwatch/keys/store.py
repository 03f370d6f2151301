# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/keys/store.py

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import yaml

from sealwatch.config.models import NodeSpec
from sealwatch.vault.models import InitResult, KeyShareSet

log = logging.getLogger("sealwatch")

# Scripts written by the older shell tooling: one `vault operator unseal <key>` per line.
_LEGACY_UNSEAL_LINE = re.compile(r"^\s*vault\s+operator\s+unseal\s+(?P<share>\S+)\s*$")


class KeyMaterialError(RuntimeError):
    """Base class for key material failures."""


class KeyMaterialNotFoundError(KeyMaterialError):
    pass


class KeyExtractionError(KeyMaterialError):
    pass


def _write_private(path: Path, text: str) -> None:
    """Atomically replace *path* with *text*, readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class KeyMaterialStore:
    """
    Owns the per-node unseal key files.

    Files are YAML::

        threshold: 3
        shares:
          - <share 1>
          - <share 2>
          ...

    Shares keep the order Vault generated them in. ``*.sh`` files produced by
    the old shell tooling are still readable; their threshold comes from
    ``default_threshold``.
    """

    def __init__(self, *, default_threshold: Optional[int] = None):
        self.default_threshold = default_threshold

    # -----------------------
    # Load
    # -----------------------
    def load(self, node: NodeSpec) -> KeyShareSet:
        path = Path(node.key_material_path)
        if not path.is_file():
            raise KeyMaterialNotFoundError(f"No key material for {node.id} at {path}")

        text = path.read_text()
        if path.suffix == ".sh":
            shares = self._extract_from_script(text)
            threshold = self.default_threshold
        else:
            shares, threshold = self._extract_from_yaml(path, text)

        if threshold is None:
            raise KeyExtractionError(f"{path} does not declare a threshold and no default is configured")
        if len(shares) < threshold:
            raise KeyExtractionError(
                f"Extracted {len(shares)} shares from {path}, need at least {threshold}"
            )

        log.debug("[keys] loaded %d shares (threshold %d) for %s", len(shares), threshold, node.id)
        return KeyShareSet.of(shares, threshold)

    @staticmethod
    def _extract_from_script(text: str) -> List[str]:
        shares = []
        for line in text.splitlines():
            m = _LEGACY_UNSEAL_LINE.match(line)
            if m:
                shares.append(m.group("share"))
        return shares

    def _extract_from_yaml(self, path: Path, text: str) -> tuple[List[str], Optional[int]]:
        try:
            data: Any = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise KeyExtractionError(f"Malformed key material in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise KeyExtractionError(f"Expected mapping in {path}, got {type(data).__name__}")

        raw = data.get("shares") or []
        if not isinstance(raw, list) or not all(isinstance(s, str) and s for s in raw):
            raise KeyExtractionError(f"'shares' in {path} must be a list of non-empty strings")

        threshold = data.get("threshold", self.default_threshold)
        if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1):
            raise KeyExtractionError(f"Invalid threshold in {path}: {threshold!r}")
        return list(raw), threshold

    # -----------------------
    # Save
    # -----------------------
    def save(self, node: NodeSpec, shares: KeyShareSet) -> Path:
        path = Path(node.key_material_path)
        doc = {"threshold": shares.threshold, "shares": list(shares.shares)}
        _write_private(path, yaml.safe_dump(doc, sort_keys=False))
        log.info("[keys] wrote %d shares for %s to %s", len(shares), node.id, path)
        return path

    def write_snapshot(self, path: Path, result: InitResult) -> Path:
        """
        Write the full init result for disaster recovery. Moving it somewhere
        safe is left to the operator's backup tooling.
        """
        doc = {
            "unseal_keys_b64": list(result.shares.shares),
            "unseal_shares": len(result.shares),
            "unseal_threshold": result.shares.threshold,
            "root_token": result.root_credential,
            "created_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        path = Path(path)
        _write_private(path, json.dumps(doc, indent=2) + "\n")
        log.info("[keys] wrote init snapshot to %s", path)
        return path
