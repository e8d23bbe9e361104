import os
import tempfile
from datetime import datetime, timedelta

# Backends must be chosen before interfaces.deps is imported
_DATA_DIR = tempfile.mkdtemp(prefix="historian-reports-")
os.environ["STORAGE"] = "memory"
os.environ["HISTORIAN_BACKEND"] = "memory"
os.environ["DATA_DIR"] = _DATA_DIR
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.config import AppConfig, get_settings
from domain.historian import QualityCode, TimeSeriesPoint

BASE_TIME = datetime(2024, 1, 15, 8, 0, 0)


def make_series(values, tag="TEST.TAG", step_seconds=60, qualities=None, start=BASE_TIME):
    qualities = qualities or [QualityCode.GOOD] * len(values)
    return [
        TimeSeriesPoint(
            timestamp=start + timedelta(seconds=i * step_seconds),
            value=value,
            quality=int(quality),
            tag_name=tag,
        )
        for i, (value, quality) in enumerate(zip(values, qualities))
    ]


@pytest.fixture
def series():
    return make_series


@pytest.fixture
def app_config(tmp_path):
    """Settings pointing at a throw-away data directory with fast bcrypt."""
    raw = dict(get_settings().raw)
    raw["storage"] = dict(raw.get("storage", {}), data_dir=str(tmp_path))
    raw["security"] = dict(raw.get("security", {}), bcrypt_rounds=4)
    os.environ["DATA_DIR"] = str(tmp_path)
    yield AppConfig(raw=raw)
    os.environ["DATA_DIR"] = _DATA_DIR
