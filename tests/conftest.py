"""
Pytest configuration file.

Ensures src/ is on sys.path so that 'import execsim' and 'import main'
work without an install, and provides shared tape fixtures.
"""
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Add src/ to sys.path
src_dir = Path(__file__).parent.parent / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from execsim.tape import TapePoint, normalize_tape  # noqa: E402

START = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def start_time():
    return START


@pytest.fixture
def scenario_rows():
    """Three one-minute observations: 100, 102, 101, volume 10 each."""
    return [
        {"t": "2024-01-02T09:30:00Z", "price": 100, "volume": 10},
        {"t": "2024-01-02T09:31:00Z", "price": 102, "volume": 10},
        {"t": "2024-01-02T09:32:00Z", "price": 101, "volume": 10},
    ]


@pytest.fixture
def scenario_tape(scenario_rows):
    return normalize_tape(scenario_rows).points


@pytest.fixture
def tape_factory():
    """Build a tape from (minute offset, price, volume) tuples."""
    def build(specs):
        return [
            TapePoint(
                timestamp=START + timedelta(minutes=minute),
                price=Decimal(str(price)),
                volume=Decimal(str(volume)),
            )
            for minute, price, volume in specs
        ]
    return build
