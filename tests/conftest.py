import sys
from copy import deepcopy
from pathlib import Path

# Ensure package import for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from Cog_Task.config import Config

_SAVED = (
    "output_dir",
    "tick_rate",
    "max_ticks",
    "strict_signals",
    "template_depth",
    "log_format",
    "log_when",
    "time_precision",
    "interpreter",
    "media_backend",
    "async_sink",
    "carry_state",
    "config_file",
)


@pytest.fixture(autouse=True)
def _restore_config(tmp_path):
    """Point engine logs at ``tmp_path`` and restore ``Config`` afterwards."""

    saved = {key: getattr(Config, key) for key in _SAVED}
    log_files = deepcopy(Config.log_files)
    Config.output_dir = str(tmp_path / "output")
    Config.async_sink = False
    yield
    for key, value in saved.items():
        setattr(Config, key, value)
    Config.log_files = log_files
