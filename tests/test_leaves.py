import wave

import numpy as np
import pytest

from Cog_Task.engine.actions import State
from Cog_Task.engine.clock import ManualClock
from Cog_Task.engine.logging.recorder import Recorder
from Cog_Task.engine.media import SilentBackend
from Cog_Task.engine.render import HeadlessRenderer
from Cog_Task.engine.scheduler import InputEvent
from Cog_Task.errors import DefinitionError

from helpers import frame_clock, make_scheduler


def _write_wav(path, seconds, rate=8000):
    with wave.open(str(path), "wb") as fh:
        fh.setnchannels(1)
        fh.setsampwidth(2)
        fh.setframerate(rate)
        fh.writeframes(b"\x00\x00" * int(seconds * rate))


def test_clock_step_has_a_lower_bound():
    with pytest.raises(DefinitionError, match="at least"):
        make_scheduler("clock(step: 0.001, out_tic: 1)")


def test_timer_writes_elapsed_time_on_stop():
    recorder = Recorder()
    sched = make_scheduler("par([wait(0.25)], [timer(sig_duration: 1, name: t)])", recorder=recorder)
    sched.run(frame_clock())
    assert sched.bus.read(1) == pytest.approx(0.25)
    timer = recorder.sink.entries("timer")
    assert timer[0]["name"] == "t"
    assert timer[0]["value"] == pytest.approx(0.25)


def test_event_marks_time_and_writes_signal():
    recorder = Recorder()
    sched = make_scheduler("seq([wait(0.1), event(label: go, out_event: 1)])", recorder=recorder)
    sched.run(frame_clock())
    assert sched.bus.read(1) is True
    events = recorder.sink.entries("event")
    assert events[0]["name"] == "go"
    assert events[0]["value"] == pytest.approx(0.1)


def test_event_needs_a_label():
    with pytest.raises(DefinitionError, match="label"):
        make_scheduler("event(out_event: 1)")


def test_instruction_waits_for_confirming_key():
    renderer = HeadlessRenderer()
    sched = make_scheduler("instruction(text: 'Press space', header: Hello)", renderer=renderer)
    sched.tick(0.0)
    assert renderer.visible[0] == ("instruction", {"text": "Press space", "header": "Hello"})
    sched.tick(0.1, [InputEvent("key", "a", 0.1)])
    assert sched.root.state is State.ACTIVE
    sched.tick(0.2, [InputEvent("key", "Space", 0.2)])
    assert sched.done
    assert renderer.visible == {}


def test_counter_finishes_after_count_clicks():
    sched = make_scheduler("counter(count: 2, out_count: 1)")
    sched.tick(0.0)
    sched.tick(0.1, [InputEvent("click", "", 0.1), InputEvent("key", "x", 0.1)])
    assert sched.bus.read(1) == 1
    assert not sched.done
    sched.tick(0.2, [InputEvent("click", "", 0.2)])
    assert sched.bus.read(1) == 2
    assert sched.done


def test_key_logger_forwards_and_records_keys():
    recorder = Recorder()
    sched = make_scheduler("par([wait(0.1)], [keylogger(out_key: 1)])", recorder=recorder)
    clock = frame_clock()
    while not sched.done:
        now = clock.now()
        events = [InputEvent("key", "f", now)] if sched.index == 1 else []
        sched.tick(now, events)
        clock.wait_frame()
    assert sched.bus.read(1) == "f"
    keys = recorder.sink.entries("keypress")
    assert [(e["name"], e["value"]) for e in keys] == [
        ("event", "start"),
        ("key", "f"),
        ("event", "stop"),
    ]


def test_reaction_scores_hits_and_misses():
    recorder = Recorder()
    sched = make_scheduler(
        "par([wait(1)], [reaction(times: [0.1, 0.5], tol: 0.2, out_rt: 1,"
        " out_accuracy: 2, out_recall: 3, out_mean_rt: 4)])",
        recorder=recorder,
    )
    clock = frame_clock()
    while not sched.done:
        now = clock.now()
        events = [InputEvent("key", "space", now)] if sched.index == 8 else []
        sched.tick(now, events)
        clock.wait_frame()
    assert sched.bus.read(1) == pytest.approx(0.05)
    assert sched.bus.read(2) == 1.0
    assert sched.bus.read(3) == 0.5
    assert sched.bus.read(4) == pytest.approx(0.05)
    names = [e["name"] for e in recorder.sink.entries("reaction")]
    assert names == ["event", "correct", "event", "accuracy", "mean_rt", "recall"]


def test_image_missing_file_finishes_with_error(tmp_path):
    sched = make_scheduler({"image": {"src": str(tmp_path / "nope.png")}})
    sched.run(frame_clock(), max_ticks=5)
    assert "not found" in sched.root.error


def test_audio_length_comes_from_wav_header(tmp_path):
    path = tmp_path / "beep.wav"
    _write_wav(path, 0.1)
    media = SilentBackend()
    sched = make_scheduler({"audio": {"src": str(path), "volume": 0.8}}, media=media)
    assert sched.run(frame_clock()) == 7
    assert media.played == [(str(path), 0.8, False, 0.0)]


def test_late_audio_starts_at_offset_under_boundaries():
    recorder = Recorder()
    media = SilentBackend()
    sched = make_scheduler(
        "seq([wait(0.1), audio(src: 'tone.ogg', duration: 0.2)])",
        recorder=recorder,
        media=media,
    )
    assert sched.run(ManualClock(0.03)) == 11
    assert media.played[0][3] == pytest.approx(0.02)
    skipped = [e for e in recorder.sink.entries("timing") if e["name"] == "skipped"]
    assert skipped[0]["value"]["offset"] == pytest.approx(0.02)
    assert sched.root.finished_at == pytest.approx(0.3)


def test_audio_without_known_duration_fails():
    sched = make_scheduler("audio(src: 'tone.ogg')")
    sched.run(frame_clock(), max_ticks=5)
    assert "no duration known" in sched.root.error


@pytest.mark.parametrize("use_trigger, sent", [(True, True), (False, False)])
def test_audio_trigger_follows_block_setting(use_trigger, sent):
    media = SilentBackend()
    sched = make_scheduler(
        "audio(src: 'tone.ogg', duration: 0.05, trigger: true)",
        media=media,
        use_trigger=use_trigger,
    )
    sched.run(frame_clock())
    assert media.played[0][2] is sent


def test_video_shows_surface_while_playing():
    renderer = HeadlessRenderer()
    sched = make_scheduler("video(src: 'clip.mp4', duration: 0.05, width: 0.5)", renderer=renderer)
    sched.tick(0.0)
    assert renderer.visible[0] == ("video", {"src": "clip.mp4", "width": 0.5})
    sched.run(frame_clock())
    assert renderer.visible == {}


def test_pointer_scores_clicks_against_mask(tmp_path):
    mask = tmp_path / "mask.npy"
    np.save(mask, np.array([[0, 0, 1, 1], [0, 0, 1, 1]]))
    sched = make_scheduler(
        {
            "pointer": {
                "inner": "fixation",
                "until": {"hits": 2},
                "mask": str(mask),
                "mask_width": 4,
                "out_rt": 1,
                "out_coord": 2,
                "out_hit": 3,
                "out_accuracy": 4,
            }
        }
    )
    sched.tick(0.0)
    sched.tick(0.5, [InputEvent("click", "", 0.5, x=0.5, y=0.5)])
    assert sched.bus.read(1) == pytest.approx(0.5)
    assert sched.bus.read(2) == "0.5,0.5"
    assert sched.bus.read(3) is False
    assert sched.bus.read(4) == 0.0
    sched.tick(1.0, [InputEvent("click", "", 1.0, x=2.5, y=1.5)])
    assert sched.bus.read(3) is True
    assert not sched.done
    sched.tick(1.5, [InputEvent("click", "", 1.5, x=3, y=0)])
    assert sched.done
    assert sched.tree[1].cancelled


def test_pointer_ends_with_inner_and_records_clicks():
    recorder = Recorder()
    sched = make_scheduler("pointer(wait(0.1), group: clicks)", recorder=recorder)
    clock = frame_clock()
    while not sched.done:
        now = clock.now()
        events = [InputEvent("click", "", now, x=10, y=20)] if sched.index == 1 else []
        sched.tick(now, events)
        clock.wait_frame()
    assert sched.root.finished_at == pytest.approx(0.1)
    (entry,) = recorder.sink.entries("clicks")
    assert entry["value"]["x"] == 10
    assert entry["value"]["score"] == 1.0


def test_pointer_until_click_ignores_keys():
    sched = make_scheduler("pointer(fixation, until: click, out_hit: 1)")
    sched.tick(0.0, [InputEvent("key", "space", 0.0)])
    assert not sched.done
    sched.tick(0.1, [InputEvent("click", "", 0.1)])
    assert sched.done
    assert sched.bus.read(1) is True


@pytest.mark.parametrize(
    "expr, message",
    [
        ("pointer(fixation)", "needs an `out_"),
        ("pointer(fixation, out_hit: 1, until: twice)", "unknown `until`"),
        ("pointer(fixation, out_hit: 1, until: {clicks: 0})", "positive integer"),
    ],
)
def test_pointer_field_checks(expr, message):
    with pytest.raises(DefinitionError, match=message):
        make_scheduler(expr)


QUESTIONNAIRE = {
    "question": {
        "items": [
            {"single_line": {"id": "name", "prompt": "Name?"}},
            {"single_choice": {"id": "hand", "prompt": "Hand?", "options": ["left", "right"]}},
            {"multi_choice": {"id": "langs", "prompt": "Languages?", "options": ["en", "fr", "de"]}},
            {"slider": {"id": "mood", "prompt": "Mood?", "range": [0, 10], "step": 0.5}},
        ]
    }
}


def test_question_records_answers_on_submit():
    recorder = Recorder()
    renderer = HeadlessRenderer()
    sched = make_scheduler(QUESTIONNAIRE, recorder=recorder, renderer=renderer)
    sched.tick(0.0)
    assert renderer.visible[0][0] == "question"
    sched.tick(
        0.1,
        [
            InputEvent("answer", "name", 0.1, value="Ada"),
            InputEvent("answer", "langs", 0.1, value=["fr", "en"]),
            InputEvent("answer", "mood", 0.1, value=7.3),
        ],
    )
    assert not sched.done
    sched.tick(0.2, [InputEvent("submit", "", 0.2)])
    assert sched.done
    answers = [(e["name"], e["value"]) for e in recorder.sink.entries("questions")]
    assert answers == [("name", "Ada"), ("hand", None), ("langs", ["en", "fr"]), ("mood", 7.5)]
    assert renderer.visible == {}


def test_question_rejects_unknown_option():
    sched = make_scheduler(QUESTIONNAIRE)
    sched.tick(0.0)
    sched.tick(0.1, [InputEvent("answer", "hand", 0.1, value="middle")])
    assert sched.done
    assert "not an option" in sched.root.error


@pytest.mark.parametrize(
    "items, message",
    [
        ([{"essay": {"id": "a"}}], "unknown item type"),
        ([{"single_line": {"prompt": "?"}}], "needs an `id`"),
        ([{"single_line": {"id": "a"}}, {"multi_line": {"id": "a"}}], "unique"),
        ([{"single_choice": {"id": "a"}}], "needs `options`"),
        ([{"slider": {"id": "a", "range": [1, 1], "step": 1}}], "empty range"),
    ],
)
def test_question_item_checks(items, message):
    with pytest.raises(DefinitionError, match=message):
        make_scheduler({"question": {"items": items}})
