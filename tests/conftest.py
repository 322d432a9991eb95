from pathlib import Path
import sys

import pandas as pd
import pytest

project_root = Path(__file__).resolve().parents[1]
src_path = project_root / "src"

if src_path.exists():
    sys.path.insert(0, str(src_path))


@pytest.fixture
def now() -> pd.Timestamp:
    return pd.Timestamp("2025-03-01T12:00:00Z")


@pytest.fixture
def thresholds():
    from tidesim.core.thresholds import CategoryThresholds
    return CategoryThresholds()


@pytest.fixture
def make_samples():
    """Build readings every 5 minutes ending at *end*, newest last."""

    def _make(end, values, interval_minutes: int = 5) -> pd.DataFrame:
        end_ts = pd.Timestamp(end)
        n = len(values)
        timestamps = [end_ts - pd.Timedelta(minutes=interval_minutes * (n - 1 - i)) for i in range(n)]
        return pd.DataFrame({"timestamp": timestamps, "glucose": [float(v) for v in values]})

    return _make
