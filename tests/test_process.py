import sys
import textwrap
import time

import pytest

from Cog_Task.engine.actions import State
from Cog_Task.engine.actions.process import encode_request, parse_response
from Cog_Task.engine.clock import MonotonicClock
from Cog_Task.engine.logging.recorder import Recorder
from Cog_Task.errors import DefinitionError

from helpers import make_scheduler

DOUBLER = textwrap.dedent(
    """
    import sys

    values = {}
    for line in sys.stdin:
        line = line.strip()
        if not line or line.startswith("with "):
            continue
        if line == "go":
            print("i64 %d" % (values.get("x", 0) * 2), flush=True)
            continue
        name, kind, value = line.split(" ", 2)
        values[name] = int(value) if kind == "i64" else value
    """
)

SLOW_COUNTER = textwrap.dedent(
    """
    import sys
    import time

    count = 0
    for line in sys.stdin:
        if line.strip() == "go":
            time.sleep(0.3)
            count += 1
            print("i64 %d" % count, flush=True)
    """
)

BURST = textwrap.dedent(
    """
    import sys

    sys.stdin.readline()
    for i in range(5):
        print("i64 %d" % i)
    print("end", flush=True)
    """
)


def _tick_until(sched, done, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not done() and time.monotonic() < deadline:
        sched.tick(time.monotonic())
        time.sleep(0.005)
    return done()


def test_request_encoding():
    text = encode_request({"x": 3, "ok": True, "rt": 0.5, "label": "a b", "none": None})
    assert text.splitlines() == [
        "with 5",
        "x i64 3",
        "ok true",
        "rt f64 0.5",
        "label str a b",
        "none nil",
        "go",
    ]
    assert encode_request({}) == "go\n"


@pytest.mark.parametrize(
    "line, expected",
    [
        ("nil\n", ("result", None)),
        ("true", ("result", True)),
        ("false", ("result", False)),
        ("i64 -4", ("result", -4)),
        ("f64 2.5", ("result", 2.5)),
        ("str two words", ("result", "two words")),
        ("err bad input", ("error", "bad input")),
        ("end", ("end", None)),
    ],
)
def test_response_decoding(line, expected):
    assert parse_response(line) == expected


def test_malformed_responses_are_errors():
    assert parse_response("i64 x")[0] == "error"
    assert parse_response("what 1")[0] == "error"


def test_process_answers_request(tmp_path):
    script = tmp_path / "double.py"
    script.write_text(DOUBLER)
    recorder = Recorder()
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": [str(script)],
                "vars": {"x": 21},
                "once": True,
                "blocking_wait": 5.0,
                "lo_incoming": 1,
                "out_result": 2,
                "name": "double",
            }
        },
        recorder=recorder,
    )
    sched.run(MonotonicClock(200.0), max_ticks=2000)
    assert sched.root.state is State.DONE
    assert sched.root.error is None
    assert sched.bus.read(2) == 42
    assert sched.bus.read(1) == 1
    assert recorder.sink.entries("process")[0]["value"] == 42
    assert sched.root.proc is None


def test_passive_raw_all_collects_output():
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": ["-c", "print('hello'); print('world')"],
                "passive": True,
                "response_type": "raw_all",
                "blocking_wait": 5.0,
                "lo_incoming": 1,
                "out_result": 2,
            }
        }
    )
    sched.run(MonotonicClock(200.0), max_ticks=2000)
    assert sched.bus.read(2) == "hello\nworld\n"


def test_process_error_line_finishes_with_error():
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": ["-c", "print('err no luck')"],
                "passive": True,
                "blocking_wait": 5.0,
                "lo_incoming": 1,
            }
        }
    )
    sched.run(MonotonicClock(200.0), max_ticks=2000)
    assert "no luck" in sched.root.error


def test_missing_executable_is_a_resource_error(tmp_path):
    sched = make_scheduler({"process": {"src": str(tmp_path / "missing"), "lo_incoming": 1}})
    sched.run(MonotonicClock(200.0), max_ticks=10)
    assert "cannot launch" in sched.root.error


@pytest.mark.parametrize(
    "body",
    [
        {"src": "prog"},
        {"src": "prog", "lo_incoming": 1, "response_type": "json"},
        {"src": "prog", "lo_incoming": 1, "passive": True, "vars": {"x": 1}},
        {"src": "prog", "lo_incoming": 1, "drop_early": True, "response_type": "raw_all"},
        {"src": "prog", "lo_incoming": 1, "in_mapping": {2: "y"}},
    ],
)
def test_process_fields_are_checked(body):
    with pytest.raises(DefinitionError):
        make_scheduler({"process": body}, state={2: 0})


def _script(tmp_path, text):
    path = tmp_path / "child.py"
    path.write_text(text)
    return [str(path)]


def test_polled_answer_arrives_on_a_later_tick(tmp_path):
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": _script(tmp_path, DOUBLER),
                "vars": {"x": 21},
                "once": True,
                "lo_incoming": 1,
                "out_result": 2,
            }
        }
    )
    sched.tick(time.monotonic())
    proc = sched.root.proc
    assert not sched.done
    assert _tick_until(sched, lambda: sched.done)
    assert sched.index > 0
    assert sched.root.error is None
    assert sched.bus.read(2) == 42
    assert proc.stdout.closed


@pytest.mark.parametrize("blocking", [True, False])
def test_blocking_holds_requests_until_answered(tmp_path, blocking):
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": _script(tmp_path, SLOW_COUNTER),
                "blocking": blocking,
                "in_update": 3,
                "lo_incoming": 1,
                "out_result": 2,
            }
        },
        state={3: 0},
    )
    sched.tick(time.monotonic())
    sched.bus.write(3, 1)
    sched.tick(time.monotonic())
    assert sched.root.dirty is blocking
    assert sched.root.awaiting
    assert _tick_until(sched, lambda: sched.bus.read(1) == 2)
    assert sched.bus.read(2) == 2
    sched.abort()


@pytest.mark.parametrize("drop_early, seen", [(True, [4]), (False, [0, 1, 2, 3, 4])])
def test_drop_early_keeps_newest_answer(tmp_path, drop_early, seen):
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": _script(tmp_path, BURST),
                "passive": True,
                "drop_early": drop_early,
                "lo_incoming": 1,
                "out_result": 2,
            }
        }
    )
    sched.tick(0.0)
    proc = sched.root.proc
    proc.stdin.write("\n")
    proc.stdin.flush()
    sched.root.reader.join(timeout=5.0)
    values = []
    for i in range(1, 10):
        sched.tick(i * 0.01)
        if 2 in sched.bus and (not values or sched.bus.read(1) != len(values)):
            values.append(sched.bus.read(2))
        if sched.done:
            break
    assert sched.done
    assert sched.root.error is None
    assert values == seen
    assert sched.bus.read(1) == len(seen)
    assert proc.stdout.closed


def test_mapped_input_and_update_signal_request_again(tmp_path):
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": _script(tmp_path, DOUBLER),
                "vars": {"x": 0},
                "in_mapping": {3: "x"},
                "in_update": 4,
                "lo_incoming": 1,
                "out_result": 2,
            }
        },
        state={3: 1, 4: 0},
    )
    assert _tick_until(sched, lambda: sched.bus.read(2) == 2)
    sched.bus.write(3, 4)
    assert _tick_until(sched, lambda: sched.bus.read(2) == 8)
    assert sched.bus.read(1) == 2
    sched.abort()


def test_input_change_is_ignored_without_on_change(tmp_path):
    sched = make_scheduler(
        {
            "process": {
                "src": sys.executable,
                "args": _script(tmp_path, DOUBLER),
                "vars": {"x": 0},
                "on_change": False,
                "in_mapping": {3: "x"},
                "in_update": 4,
                "lo_incoming": 1,
                "out_result": 2,
            }
        },
        state={3: 1, 4: 0},
    )
    assert _tick_until(sched, lambda: sched.bus.read(2) == 2)
    sched.bus.write(3, 4)
    sched.tick(time.monotonic())
    assert not sched.root.awaiting
    assert sched.bus.read(2) == 2
    sched.bus.write(4, 1)
    assert _tick_until(sched, lambda: sched.bus.read(2) == 8)
    sched.abort()
