"""Shared helpers for building and ticking trees in tests."""

from Cog_Task.engine.clock import ManualClock
from Cog_Task.engine.logging.recorder import Recorder
from Cog_Task.engine.scheduler import Scheduler
from Cog_Task.engine.signals import SignalBus
from Cog_Task.task.builder import TreeBuilder

RATE = 60.0


def make_scheduler(expr, signals=None, state=None, **kwargs):
    tree = TreeBuilder(signals).build(expr)
    tree.validate(state or {})
    bus = SignalBus(state or {})
    recorder = kwargs.pop("recorder", None) or Recorder()
    return Scheduler(tree, bus, recorder=recorder, **kwargs)


def step(sched, clock, ticks, events=None):
    """Run ``ticks`` ticks, returning the bus snapshot after each."""

    out = []
    for _ in range(ticks):
        sched.tick(clock.now(), events or ())
        out.append(sched.bus.snapshot())
        clock.wait_frame()
    return out


def frame_clock():
    return ManualClock(1.0 / RATE)
