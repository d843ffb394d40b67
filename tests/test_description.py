import json

import pytest
import yaml

from Cog_Task.config import Config, LogWhen, TimePrecision
from Cog_Task.errors import ChecksumError, DefinitionError
from Cog_Task.task.description import BlockConfig, load_task, parse_task, task_file

TASK = {
    "name": "Stroop",
    "version": 1.2,
    "config": {"time_precision": "respect_intervals", "volume": 0.3, "record": [1]},
    "blocks": [
        {
            "name": "Practice 1",
            "signals": {"tic": 1},
            "state": {1: 0},
            "tree": "seq([wait(0.5), timeout(0.5, fixation)])",
        },
        {
            "name": "Main",
            "config": {"time_precision": "respect_boundaries", "log_when": "start"},
            "tree": {"seq": [{"wait": 0.5}, "nil"]},
        },
    ],
}


def _write(tmp_path, data, name="task.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


def test_version_is_text():
    assert parse_task(TASK).version == "1.2"


def test_block_config_inherits_field_by_field():
    task = parse_task(TASK)
    practice, main = task.blocks
    cfg = task.block_config(practice)
    assert cfg.time_precision is TimePrecision.RESPECT_INTERVALS
    assert cfg.volume == 0.3
    assert cfg.record == [1]
    assert cfg.blocks_per_row == 3
    assert cfg.use_trigger is True
    main_cfg = task.block_config(main)
    assert main_cfg.time_precision is TimePrecision.RESPECT_BOUNDARIES
    assert main_cfg.log_when is LogWhen.START
    assert main_cfg.volume == 0.3


def test_unset_fields_fall_back_to_process_config():
    Config.interpreter = "custom"
    assert BlockConfig().resolved().interpreter == "custom"


@pytest.mark.parametrize(
    "change",
    [
        {"blocks": []},
        {"blocks": [TASK["blocks"][0], TASK["blocks"][0]]},
        {"blocks": [{**TASK["blocks"][0], "name": "bad/name"}]},
        {"blocks": [{**TASK["blocks"][0], "name": "  "}]},
        {"blocks": [{**TASK["blocks"][0], "signals": {"tic": 0}}]},
        {"blocks": [{**TASK["blocks"][0], "state": {1: [1, 2]}}]},
        {"blocks": [{**TASK["blocks"][0], "config": {"verify_sha2": True}}]},
        {"config": {"volume": 1.5}},
        {"config": {"unknown": True}},
        {"config": {"time_precision": "exact"}},
    ],
)
def test_invalid_descriptions(change):
    with pytest.raises(DefinitionError):
        parse_task({**TASK, **change})


def test_block_lookup():
    task = parse_task(TASK)
    assert task.block_names() == ["Practice 1", "Main"]
    assert task.block("Main").name == "Main"
    with pytest.raises(KeyError):
        task.block("Missing")


def test_hash_tracks_block_content():
    first = parse_task(TASK).hash()
    assert first == parse_task(TASK).hash()
    changed = json.loads(json.dumps(TASK))
    changed["blocks"][1]["tree"] = "nil"
    assert parse_task(changed).hash() != first


def test_load_from_directory_and_description_file(tmp_path):
    _write(tmp_path, TASK)
    (tmp_path / "description.txt").write_text("Name the ink colour.")
    task = load_task(tmp_path)
    assert task.description == "Name the ink colour."
    assert task_file(tmp_path) == tmp_path / "task.yaml"


def test_load_json_task(tmp_path):
    path = tmp_path / "task.json"
    path.write_text(json.dumps({**TASK, "blocks": [{**TASK["blocks"][1]}]}))
    assert load_task(path).blocks[0].name == "Main"


def test_missing_task_file(tmp_path):
    with pytest.raises(DefinitionError):
        load_task(tmp_path)
    with pytest.raises(DefinitionError):
        load_task(tmp_path / "task.yaml")


def test_checksum_from_inline_hash(tmp_path):
    digest = parse_task(TASK).hash()
    good = {**TASK, "config": {**TASK["config"], "verify_sha2": digest}}
    load_task(_write(tmp_path, good))
    bad = {**TASK, "config": {**TASK["config"], "verify_sha2": "0" * 64}}
    with pytest.raises(ChecksumError):
        load_task(_write(tmp_path, bad))
    load_task(_write(tmp_path, bad), verify=False)


def test_checksum_from_sidecar(tmp_path):
    data = {**TASK, "config": {**TASK["config"], "verify_sha2": True}}
    path = _write(tmp_path, data)
    with pytest.raises(ChecksumError, match="cannot read"):
        load_task(path)
    (tmp_path / "task.yaml.sha256").write_text(parse_task(data).hash() + "\n")
    assert load_task(path).name == "Stroop"
