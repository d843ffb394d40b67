import pytest

from Cog_Task.config import TimePrecision
from Cog_Task.engine.actions import State
from Cog_Task.engine.clock import ManualClock
from Cog_Task.engine.logging.recorder import Recorder
from Cog_Task.errors import DefinitionError

from helpers import frame_clock, make_scheduler, step


def test_seq_wait_timeout_takes_one_second_of_ticks():
    sched = make_scheduler("seq([wait(0.5), timeout(0.5, fixation)])")
    ticks = sched.run(frame_clock())
    assert 59 <= ticks <= 61
    assert sched.root.state is State.DONE
    assert sched.root.finished_at == pytest.approx(1.0)
    assert sched.tree[2].finished_at == pytest.approx(1.0)


def test_seq_chains_children_without_gaps():
    sched = make_scheduler("seq([wait(0.2), wait(0.3)])")
    ticks = sched.run(frame_clock())
    assert ticks == 31
    assert sched.tree[2].anchor == pytest.approx(0.2)


def test_instant_children_chain_within_one_tick():
    sched = make_scheduler("seq([nil, nil, seq([nil]), nil])")
    assert sched.run(frame_clock()) == 1


def test_par_all_waits_for_slowest_child():
    sched = make_scheduler("par([wait(0.1), wait(0.3)])")
    assert sched.run(frame_clock()) == 19
    assert sched.root.finished_at == pytest.approx(0.3)


def test_par_any_cancels_the_rest():
    sched = make_scheduler("par([wait(0.1), wait(0.3)], mode: any)")
    assert sched.run(frame_clock()) == 7
    slow = sched.tree[2]
    assert slow.state is State.DONE and slow.cancelled


def test_secondary_children_stop_writing_after_par_completes():
    sched = make_scheduler(
        "seq([par([wait(0.1)], [clock(step: 0.05, out_tic: 1)]), wait(0.2)])"
    )
    snaps = step(sched, frame_clock(), 20)
    clock = sched.tree[3]
    assert clock.cancelled
    assert snaps[-1][1] == snaps[7][1]


def test_timeout_ignores_early_inner_completion():
    sched = make_scheduler("timeout(0.5, wait(0.1))")
    assert sched.run(frame_clock()) == 31
    assert sched.tree[1].state is State.DONE


def test_timeout_of_zero_finishes_on_activation():
    sched = make_scheduler("timeout(0, fixation)")
    assert sched.run(frame_clock()) == 1
    assert sched.tree[1].state is State.PENDING


def test_negative_duration_is_rejected():
    with pytest.raises(DefinitionError, match="negative"):
        make_scheduler("timeout(-0.5, fixation)")


def test_reader_sees_writer_value_in_same_tick():
    sched = make_scheduler(
        "par([clock(step: 0.5, out_tic: 1),"
        " function(expr: 'x * 10', vars: {x: 0}, in_mapping: {1: x}, out_result: 2)])"
    )
    snaps = step(sched, frame_clock(), 31)
    assert snaps[29][2] == 0
    assert snaps[30][1] == 1
    assert snaps[30][2] == 10


def test_clock_drives_function_counter():
    sched = make_scheduler(
        "par([clock(step: 1, out_tic: 1)],"
        " [function(expr: 'self + 1', vars: {'self': 0}, in_update: 1,"
        " out_result: 2, persistent: true)])"
    )
    clock = ManualClock(0.1)
    values = []
    for _ in range(55):
        sched.tick(clock.now())
        value = sched.bus.read(2)
        if not values or values[-1] != value:
            values.append(value)
        clock.wait_frame()
    assert values == [1, 2, 3, 4, 5, 6]
    assert sched.bus.read(1) == 5


def test_max_ticks_aborts_the_root():
    sched = make_scheduler("fixation")
    assert sched.run(frame_clock(), max_ticks=10) == 10
    assert sched.root.cancelled
    assert sched.done


def test_respect_boundaries_keeps_nominal_schedule():
    recorder = Recorder()
    sched = make_scheduler(
        "seq([wait(0.1), wait(0.1)])",
        precision=TimePrecision.RESPECT_BOUNDARIES,
        recorder=recorder,
    )
    assert sched.run(ManualClock(0.03)) == 8
    assert sched.tree[2].anchor == pytest.approx(0.1)
    assert sched.root.finished_at == pytest.approx(0.2)
    late = recorder.sink.entries("timing")
    assert [e["name"] for e in late] == ["late"]
    assert late[0]["value"]["delay"] == pytest.approx(0.02)


def test_respect_intervals_anchors_at_actual_start():
    recorder = Recorder()
    sched = make_scheduler(
        "seq([wait(0.1), wait(0.1)])",
        precision=TimePrecision.RESPECT_INTERVALS,
        recorder=recorder,
    )
    assert sched.run(ManualClock(0.03)) == 9
    assert sched.tree[2].anchor == pytest.approx(0.12)
    assert recorder.sink.entries("timing") == []


def test_jittered_frames_never_cut_a_sequence_short():
    expr = "seq([" + ", ".join(["wait(0.1)"] * 10) + "])"
    period = 1.0 / 60.0
    ended = {}
    for precision in TimePrecision:
        sched = make_scheduler(expr, precision=precision)
        sched.run(ManualClock(period, jitter=[0, 0.05, 0, 0.013, 0.031]))
        assert sched.now >= 1.0 - period
        ended[precision] = sched.now
    assert ended[TimePrecision.RESPECT_BOUNDARIES] < ended[TimePrecision.RESPECT_INTERVALS]


def test_flow_records_start_and_stop():
    recorder = Recorder()
    sched = make_scheduler("seq([wait(0.05, name: pause)], log_when: start_and_stop)", recorder=recorder)
    sched.run(frame_clock())
    flow = recorder.sink.entries("flow")
    assert [(e["name"], e["value"]["kind"]) for e in flow] == [("start", "seq"), ("stop", "seq")]


def test_default_log_when_applies_to_every_action():
    recorder = Recorder()
    sched = make_scheduler("seq([nil, wait(0.05, name: pause)])", recorder=recorder, log_when="stop")
    sched.run(frame_clock())
    flow = recorder.sink.entries("flow")
    assert [e["value"]["kind"] for e in flow] == ["nil", "wait", "seq"]
    assert flow[1]["value"]["name"] == "pause"


def test_leaf_error_becomes_done_with_error():
    recorder = Recorder()
    sched = make_scheduler(
        "seq([function(expr: '1 / 0', once: true, out_error: 5), wait(0.05)])",
        recorder=recorder,
    )
    sched.run(frame_clock())
    failed = sched.tree[1]
    assert failed.state is State.DONE
    assert "ZeroDivisionError" in failed.error
    assert sched.bus.read(5) == failed.error
    assert sched.root.error is None
    assert sched.tree[2].state is State.DONE
    assert recorder.sink.entries("error")[0]["name"] == "function#1"


def test_value_the_bus_cannot_hold_is_a_leaf_error():
    sched = make_scheduler("function(expr: '(-1) ** 0.5', out_result: 2, once: true, out_error: 3)")
    assert sched.run(frame_clock()) == 1
    assert sched.root.state is State.DONE
    assert "complex" in sched.root.error
    assert sched.bus.read(3) == sched.root.error
    assert 2 not in sched.bus


def test_escalate_finishes_container_with_child_error():
    sched = make_scheduler(
        "seq([function(expr: '1 / 0', once: true), wait(1)], on_error: escalate)"
    )
    assert sched.run(frame_clock()) == 1
    assert "ZeroDivisionError" in sched.root.error
    assert sched.tree[2].state is State.PENDING


def test_strict_bus_reports_conflicts_to_recorder():
    recorder = Recorder()
    sched = make_scheduler(
        "par([event(label: a, out_event: 1), event(label: b, out_event: 1)])",
        recorder=recorder,
    )
    sched.bus.strict = True
    sched.run(frame_clock())
    conflicts = recorder.sink.entries("conflict")
    assert len(conflicts) == 1
    assert conflicts[0]["name"] == "1"
    assert [e["name"] for e in recorder.sink.entries("event")] == ["a", "b"]
