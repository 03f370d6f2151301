import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from sealwatch.keys.store import KeyMaterialStore
from sealwatch.observers import events
from sealwatch.observers.dispatcher import EventBus
from sealwatch.probe.status import StatusProbe
from sealwatch.supervisor.supervisor import ClusterSupervisor
from sealwatch.unseal.executor import UnsealExecutor
from sealwatch.vault.models import KeyShareSet

from conftest import Capture, FakeVault, addr


def _supervisor(cfg, fv, *, bus=None, max_workers=1):
    return ClusterSupervisor(
        cfg.nodes,
        probe=StatusProbe(fv),
        store=KeyMaterialStore(default_threshold=cfg.bootstrap.threshold),
        executor=UnsealExecutor(fv, sleep=lambda s: None, bus=bus),
        policy=cfg.supervisor.unseal_retry.policy(),
        interval_seconds=cfg.supervisor.interval_seconds,
        max_workers=max_workers,
        bus=bus,
    )


def _write_keys(cfg, shares=("a", "b", "c", "d", "e"), threshold=3, only=None):
    store = KeyMaterialStore()
    for node in cfg.nodes:
        if only is None or node.id in only:
            store.save(node, KeyShareSet.of(list(shares), threshold))


@pytest.fixture
def sealwatch_records(caplog):
    logger = logging.getLogger("sealwatch")
    logger.addHandler(caplog.handler)
    caplog.handler.setLevel(logging.DEBUG)
    previous = logger.level
    logger.setLevel(logging.DEBUG)
    yield caplog
    logger.removeHandler(caplog.handler)
    logger.setLevel(previous)


def test_unsealed_nodes_get_no_remediation(make_config, fake_vault: FakeVault):
    cfg = make_config(3)
    for i in (1, 2, 3):
        fake_vault.add(addr(i), sealed=False)

    report = _supervisor(cfg, fake_vault).tick()

    assert report.count("UNSEALED") == 3
    assert fake_vault.ops("unseal") == []


def test_sealed_node_is_unsealed_with_stored_shares(make_config, fake_vault: FakeVault):
    cfg = make_config(3)
    _write_keys(cfg)
    fake_vault.add(addr(1), sealed=False)
    fake_vault.add(addr(2), sealed=True)
    fake_vault.add(addr(3), sealed=False)

    report = _supervisor(cfg, fake_vault).tick()

    assert [o.status for o in report.outcomes] == ["UNSEALED", "REMEDIATED", "UNSEALED"]
    assert [c[1:] for c in fake_vault.ops("unseal")] == [(addr(2), "a"), (addr(2), "b"), (addr(2), "c")]
    assert fake_vault.nodes[addr(2)].sealed is False


def test_unreachable_then_sealed_is_remediated_on_third_tick(make_config, fake_vault: FakeVault, sealwatch_records):
    cfg = make_config(1)
    _write_keys(cfg)
    node = fake_vault.add(addr(1), reachable=False, sealed=True)
    sup = _supervisor(cfg, fake_vault)

    first = sup.tick()
    second = sup.tick()
    errors_before = [r for r in sealwatch_records.records if r.levelno >= logging.ERROR]

    node.reachable = True
    third = sup.tick()

    assert first.outcomes[0].status == "UNREACHABLE"
    assert second.outcomes[0].status == "UNREACHABLE"
    assert errors_before == []
    assert third.outcomes[0].status == "REMEDIATED"
    assert third.tick == 3
    assert len(fake_vault.ops("unseal")) == 3


def test_missing_keys_fail_one_node_without_stopping_the_tick(make_config, fake_vault: FakeVault):
    cfg = make_config(3)
    _write_keys(cfg, only={"vault-1", "vault-3"})
    for i in (1, 2, 3):
        fake_vault.add(addr(i), sealed=True)
    cap = Capture()

    report = _supervisor(cfg, fake_vault, bus=EventBus([cap])).tick()

    assert [o.status for o in report.outcomes] == ["REMEDIATED", "FAILED", "REMEDIATED"]
    assert "No key material" in report.outcomes[1].error
    assert "RemediationFailed" in cap.kinds()
    assert cap.kinds()[-1] == "TickSummary"


def test_exhausted_unseal_is_failed_and_retried_next_tick(make_config, fake_vault: FakeVault):
    cfg = make_config(1)
    _write_keys(cfg)
    node = fake_vault.add(addr(1), sealed=True, stuck=True)
    sup = _supervisor(cfg, fake_vault)

    assert sup.tick().outcomes[0].status == "FAILED"
    node.stuck = False
    assert sup.tick().outcomes[0].status == "REMEDIATED"


def test_unexpected_error_is_contained_per_node(make_config, fake_vault: FakeVault):
    class Boom(FakeVault):
        def seal_status(self, address):
            if address == addr(1):
                raise KeyError("bug")
            return super().seal_status(address)

    cfg = make_config(2)
    fv = Boom()
    fv.add(addr(1))
    fv.add(addr(2), sealed=False)

    report = _supervisor(cfg, fv).tick()

    assert [o.status for o in report.outcomes] == ["FAILED", "UNSEALED"]


def test_uninitialized_node_is_left_alone(make_config, fake_vault: FakeVault):
    cfg = make_config(1)
    fake_vault.add(addr(1), initialized=False, sealed=True)

    report = _supervisor(cfg, fake_vault).tick()

    assert report.outcomes[0].status == "UNINITIALIZED"
    assert fake_vault.ops("unseal") == []


def test_parallel_tick_handles_every_node(make_config, fake_vault: FakeVault):
    cfg = make_config(3)
    _write_keys(cfg)
    for i in (1, 2, 3):
        fake_vault.add(addr(i), sealed=True)

    report = _supervisor(cfg, fake_vault, max_workers=3).tick()

    assert [o.node_id for o in report.outcomes] == ["vault-1", "vault-2", "vault-3"]
    assert report.count("REMEDIATED") == 3


def test_run_stops_after_max_ticks(make_config, fake_vault: FakeVault):
    cfg = make_config(1)
    fake_vault.add(addr(1), sealed=False)

    ran = _supervisor(cfg, fake_vault).run(threading.Event(), max_ticks=3)

    assert ran == 3
    assert len(fake_vault.ops("seal_status")) == 3


def test_run_honours_stop_between_ticks(make_config, fake_vault: FakeVault):
    cfg = make_config(1)
    fake_vault.add(addr(1), sealed=False)
    stop = threading.Event()
    sup = _supervisor(cfg, fake_vault)

    original_tick = sup.tick

    def tick_then_stop():
        report = original_tick()
        stop.set()
        return report

    sup.tick = tick_then_stop

    assert sup.run(stop) == 1


def test_each_tick_carries_its_own_timestamp(make_config, fake_vault: FakeVault, monkeypatch):
    class SteppingClock:
        now_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

        @classmethod
        def now(cls, tz=None):
            cls.now_at += timedelta(seconds=30)
            return cls.now_at

    monkeypatch.setattr(events, "datetime", SteppingClock)
    cfg = make_config(1)
    fake_vault.add(addr(1), sealed=False)
    cap = Capture()
    sup = _supervisor(cfg, fake_vault, bus=EventBus([cap]))

    sup.tick()
    sup.tick()

    started = [e for e in cap.events if type(e).__name__ == "TickStarted"]
    assert len(started) == 2
    assert started[0].ts < started[1].ts
    assert len({e.ts for e in cap.events}) == len(cap.events)
