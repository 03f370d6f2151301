# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/cli/app.py
from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import List, Optional

import typer

from sealwatch.bootstrap.errors import BootstrapError
from sealwatch.bootstrap.orchestrator import BootstrapOrchestrator
from sealwatch.config.loader import load_config
from sealwatch.config.models import SealwatchConfig
from sealwatch.keys.store import KeyMaterialStore
from sealwatch.logging.log import init_logging
from sealwatch.observers.console import ConsoleObserver
from sealwatch.observers.dispatcher import EventBus
from sealwatch.observers.jsonfile import JsonFileObserver
from sealwatch.observers.logger import LoggerObserver
from sealwatch.observers.events import new_ctx
from sealwatch.probe.status import StatusProbe
from sealwatch.supervisor.supervisor import ClusterSupervisor
from sealwatch.unseal.executor import UnsealExecutor
from sealwatch.vault.client import VaultClient


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="sealwatch: keep a Vault raft cluster initialized and unsealed")


# ------------------------------------------------------------------------------
# Helpers (extracted logic)
# ------------------------------------------------------------------------------

def _start(config: str, command: str, debug: bool, events_to_console: bool = False):
    """
    Load config and set up logging plus the observer bus for one command.
    """
    cfg: SealwatchConfig = load_config(config)
    logger, run_id, log_path = init_logging(base_dir=cfg.log_dir, verbose=debug, command=command)

    observers: List = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    if events_to_console:
        observers.append(ConsoleObserver())

    bus = EventBus(observers=observers)
    run_ctx = new_ctx(cluster=cfg.cluster_name, component=command, run_id=run_id)
    return cfg, logger, run_id, log_path, bus, run_ctx


def _build_supervisor(cfg: SealwatchConfig, client: VaultClient, bus: EventBus, run_ctx: dict) -> ClusterSupervisor:
    return ClusterSupervisor(
        cfg.nodes,
        probe=StatusProbe(client),
        store=KeyMaterialStore(default_threshold=cfg.bootstrap.threshold),
        executor=UnsealExecutor(client, bus=bus, run_ctx=run_ctx),
        policy=cfg.supervisor.unseal_retry.policy(),
        interval_seconds=cfg.supervisor.interval_seconds,
        max_workers=cfg.supervisor.max_workers,
        bus=bus,
        run_ctx=run_ctx,
    )


def _client(cfg: SealwatchConfig) -> VaultClient:
    return VaultClient(timeout_seconds=cfg.request_timeout_seconds, verify_tls=cfg.verify_tls)


@contextmanager
def _stop_on_signals(stop: threading.Event):
    """Set *stop* on SIGINT/SIGTERM while the block runs."""
    def _handler(signum, _frame):
        typer.echo(f"\nReceived {signal.Signals(signum).name}, stopping after the current step...")
        stop.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield stop
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def supervise(
    config: str = typer.Argument(..., help="sealwatch YAML config"),
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Watch every node and unseal the ones that come back sealed."""
    cfg, logger, run_id, log_path, bus, run_ctx = _start(config, "supervise", debug)

    typer.secho("sealwatch supervisor started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  Nodes    : {', '.join(n.id for n in cfg.nodes)}")
    typer.echo(f"  Interval : {cfg.supervisor.interval_seconds}s")

    supervisor = _build_supervisor(cfg, _client(cfg), bus, run_ctx)

    if once:
        report = supervisor.tick()
        typer.echo(report.summary())
        if report.count("FAILED"):
            raise typer.Exit(code=1)
        return

    with _stop_on_signals(threading.Event()) as stop:
        supervisor.run(stop)


@app.command()
def bootstrap(
    config: str = typer.Argument(..., help="sealwatch YAML config"),
    resume: bool = typer.Option(
        False,
        "--resume",
        help="Finish an interrupted bootstrap using the stored key material instead of initializing",
    ),
    debug: bool = typer.Option(False, "--debug"),
):
    """Initialize the cluster, store the key shares, then unseal and join every node."""
    cfg, logger, run_id, log_path, bus, run_ctx = _start(config, "bootstrap", debug, events_to_console=debug)

    typer.secho("sealwatch bootstrap started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  Leader   : {cfg.leader.id} ({cfg.leader.address})")
    typer.echo("")

    client = _client(cfg)
    stop = threading.Event()

    orchestrator = BootstrapOrchestrator(
        cfg,
        client=client,
        probe=StatusProbe(client),
        store=KeyMaterialStore(default_threshold=cfg.bootstrap.threshold),
        executor=UnsealExecutor(client, bus=bus, run_ctx=run_ctx),
        bus=bus,
        run_ctx=run_ctx,
        stop_event=stop,
    )

    try:
        with _stop_on_signals(stop):
            report = orchestrator.run(resume=resume)
    except BootstrapError as exc:
        typer.secho(f"Bootstrap failed at step '{exc.step}': {exc.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.echo("")
    for s in report.steps:
        typer.echo(f"  {s.status:<8} {s.name}")
    typer.secho("Cluster initialized and unsealed", fg=typer.colors.GREEN, bold=True)
    if not resume:
        typer.echo(f"Init snapshot written to {cfg.init_snapshot_path}; move it somewhere safe.")


@app.command()
def status(
    config: str = typer.Argument(..., help="sealwatch YAML config"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Print the seal state of every node."""
    cfg, logger, run_id, log_path, bus, run_ctx = _start(config, "status", debug)
    probe = StatusProbe(_client(cfg))

    typer.echo(f"{'NODE':<16} {'STATE':<14} {'INITIALIZED':<12} {'SEALED':<7} LEADER")
    for node in cfg.nodes:
        st = probe.probe(node)
        typer.echo(
            f"{node.id:<16} {st.state.value:<14} {_flag(st.initialized):<12} "
            f"{_flag(st.sealed):<7} {st.leader_address or '-'}"
        )


@app.command()
def unseal(
    config: str = typer.Argument(..., help="sealwatch YAML config"),
    node: str = typer.Option(..., "--node", help="Node id to unseal"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Check one node now and unseal it if it is sealed."""
    cfg, logger, run_id, log_path, bus, run_ctx = _start(config, "unseal", debug)

    target = cfg.by_id().get(node)
    if target is None:
        raise typer.BadParameter(
            f"Unknown node: {node}\nConfigured nodes: {', '.join(cfg.by_id())}"
        )

    supervisor = _build_supervisor(cfg, _client(cfg), bus, run_ctx)
    outcome = supervisor.remediate(target)
    typer.echo(f"{outcome.node_id}: {outcome.status}" + (f" ({outcome.error})" if outcome.error else ""))
    if outcome.status == "FAILED":
        raise typer.Exit(code=1)


def _flag(v: Optional[bool]) -> str:
    return "-" if v is None else str(v).lower()


if __name__ == "__main__":
    app()
