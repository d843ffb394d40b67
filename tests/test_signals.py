import numpy as np
import pytest

from Cog_Task.engine.signals import SignalBus, coerce_value


def test_initial_state_is_not_journaled():
    bus = SignalBus({1: 0, 2: "a"})
    assert bus.read(1) == 0
    assert bus.read(2) == "a"
    assert bus.journal() == []


def test_read_missing_returns_default():
    bus = SignalBus()
    assert bus.read(5) is None
    assert bus.read(5, 3) == 3
    assert 5 not in bus


def test_repeated_reads_within_tick_agree():
    bus = SignalBus()
    bus.begin_tick(0, 0.0)
    bus.write(1, 4.5)
    assert bus.read(1) == bus.read(1) == 4.5


def test_last_write_wins_and_strict_records_conflict():
    bus = SignalBus(strict=True)
    bus.begin_tick(3, 0.05)
    bus.write(1, 1)
    bus.write(1, 2)
    assert bus.read(1) == 2
    conflicts = bus.take_conflicts()
    assert len(conflicts) == 1
    assert (conflicts[0].id, conflicts[0].tick) == (1, 3)
    assert (conflicts[0].previous, conflicts[0].value) == (1, 2)
    assert bus.take_conflicts() == []


def test_lenient_bus_ignores_conflicts():
    bus = SignalBus()
    bus.begin_tick(0, 0.0)
    bus.write(1, 1)
    bus.write(1, 2)
    assert bus.conflicts == []


def test_changed_reports_ids_in_write_order():
    bus = SignalBus()
    bus.begin_tick(0, 0.0)
    mark = bus.seq
    bus.write(3, 1)
    bus.write(1, 1)
    bus.write(3, 2)
    assert bus.changed([1, 2, 3], mark) == [1, 3]
    assert bus.changed([1, 2, 3], bus.seq) == []


def test_journal_is_drained_once():
    bus = SignalBus()
    bus.begin_tick(0, 0.5)
    bus.write(2, True)
    writes = bus.take_journal()
    assert [(w.id, w.value, w.tick, w.time) for w in writes] == [(2, True, 0, 0.5)]
    assert bus.take_journal() == []


def test_snapshot_is_a_copy():
    bus = SignalBus({1: 1})
    snap = bus.snapshot()
    bus.write(1, 2)
    assert snap == {1: 1}


def test_invalid_ids_and_values_are_rejected():
    bus = SignalBus()
    with pytest.raises(ValueError):
        bus.write(0, 1)
    with pytest.raises(TypeError):
        bus.write(1, None)
    with pytest.raises(TypeError):
        bus.write(1, [1, 2])


def test_numpy_scalars_are_unwrapped():
    value = coerce_value(np.float64(0.25))
    assert value == 0.25 and type(value) is float
    assert type(coerce_value(np.int32(3))) is int
