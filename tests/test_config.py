import json
import os

import pytest

from Cog_Task.config import Config, LogWhen, load_config


def test_load_from_json_file(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"tick_rate": 120, "max_ticks": 10, "unknown": 1}))
    Config.load_from_file(str(cfg))
    assert Config.tick_rate == 120
    assert Config.max_ticks == 10
    assert Config.tick_period() == pytest.approx(1 / 120)
    assert not hasattr(Config, "unknown")
    assert Config.config_file == str(cfg)


def test_load_from_yaml_resolves_relative_output(tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("output_dir: runs\nstrict_signals: true\n")
    Config.load_from_file(str(cfg))
    assert Config.output_dir == os.path.join(str(tmp_path), "runs")
    assert Config.strict_signals is True
    assert Config.output_path("a.jsonl") == os.path.join(str(tmp_path), "runs", "a.jsonl")


def test_nested_log_files_are_merged(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"log_files": {"block": {"block_log": False}}}))
    Config.load_from_file(str(cfg))
    assert not Config.is_log_enabled("block", "block_log")
    assert not Config.is_log_enabled("block")
    assert Config.is_log_enabled("definition", "definition_log")
    assert not Config.is_log_enabled("missing")


def test_private_and_missing_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load_from_file(str(tmp_path / "nope.json"))
    cfg = tmp_path / "config.json"
    cfg.write_text("[1, 2]")
    with pytest.raises(ValueError):
        Config.load_from_file(str(cfg))


def test_load_config_returns_data(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"carry_state": True}))
    assert load_config(str(cfg)) == {"carry_state": True}
    assert Config.carry_state is True


def test_log_when_flags():
    assert LogWhen.START_AND_STOP.on_start and LogWhen.START_AND_STOP.on_stop
    assert LogWhen.STOP.on_stop and not LogWhen.STOP.on_start
    assert not LogWhen.NONE.on_start and not LogWhen.NONE.on_stop
