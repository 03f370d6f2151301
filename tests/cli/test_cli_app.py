import logging
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

import sealwatch.cli.app as cli
from sealwatch.keys.store import KeyMaterialStore
from sealwatch.vault.models import KeyShareSet

from conftest import FakeVault, addr

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("SEALWATCH_OVERRIDES_FILE", raising=False)
    fv = FakeVault()
    monkeypatch.setattr(cli, "VaultClient", lambda **kw: fv)
    monkeypatch.setattr(
        cli,
        "init_logging",
        lambda **kw: (logging.getLogger("sealwatch"), "run-1", tmp_path / "logs" / "run.log"),
    )

    cfg = tmp_path / "sealwatch.yaml"
    cfg.write_text(textwrap.dedent(f"""
        cluster_name: test
        nodes:
          - id: vault-1
            address: {addr(1)}
            key_material_path: {tmp_path}/vault-1/unseal-keys.yaml
          - id: vault-2
            address: {addr(2)}
            key_material_path: {tmp_path}/vault-2/unseal-keys.yaml
        supervisor:
          interval_seconds: 1
          unseal_retry: {{max_attempts: 2, delay_seconds: 0}}
        bootstrap:
          share_count: 5
          threshold: 3
          readiness_retry: {{max_attempts: 2, delay_seconds: 0}}
    """))
    return fv, cfg


def test_bootstrap_command_brings_up_cluster(cli_env):
    fv, cfg = cli_env
    fv.add(addr(1), initialized=False)
    fv.add(addr(2), initialized=False)

    result = runner.invoke(cli.app, ["bootstrap", str(cfg)])

    assert result.exit_code == 0, result.output
    assert "Cluster initialized and unsealed" in result.output
    assert "vault-init-keys.json" in result.output
    assert not fv.nodes[addr(2)].sealed


def test_bootstrap_command_exits_nonzero_when_already_initialized(cli_env):
    fv, cfg = cli_env
    fv.add(addr(1), initialized=True, sealed=False)
    fv.add(addr(2), initialized=True, sealed=False)

    result = runner.invoke(cli.app, ["bootstrap", str(cfg)])

    assert result.exit_code == 1
    assert "precondition" in result.output
    assert fv.ops("init") == []


def test_supervise_once_unseals_sealed_node(cli_env, tmp_path: Path):
    fv, cfg = cli_env
    fv.add(addr(1), sealed=False)
    fv.add(addr(2), sealed=True)
    KeyMaterialStore().save(
        cli.load_config(cfg).nodes[1], KeyShareSet.of(["a", "b", "c"], 3)
    )

    result = runner.invoke(cli.app, ["supervise", str(cfg), "--once"])

    assert result.exit_code == 0, result.output
    assert "REMEDIATED=1" in result.output


def test_supervise_once_exits_nonzero_on_failure(cli_env):
    fv, cfg = cli_env
    fv.add(addr(1), sealed=True)
    fv.add(addr(2), sealed=False)

    result = runner.invoke(cli.app, ["supervise", str(cfg), "--once"])

    assert result.exit_code == 1


def test_status_command_lists_every_node(cli_env):
    fv, cfg = cli_env
    fv.add(addr(1), sealed=False)
    fv.add(addr(2), reachable=False)

    result = runner.invoke(cli.app, ["status", str(cfg)])

    assert result.exit_code == 0
    assert "UNSEALED" in result.output
    assert "UNREACHABLE" in result.output


def test_unseal_command_rejects_unknown_node(cli_env):
    fv, cfg = cli_env

    result = runner.invoke(cli.app, ["unseal", str(cfg), "--node", "vault-9"])

    assert result.exit_code != 0
