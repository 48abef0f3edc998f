from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List

import pytest
import structlog

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.models import DrawRecord

TODAY = date(2024, 7, 20)
LATEST_DRAW_DATE = date(2024, 7, 16)
HEADER = "DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6,Bonus"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


def draw_numbers(index: int) -> List[int]:
    # Step of 6 over 37 values: distinct, spread over all thirds, no runs
    offset = index % 37
    return sorted((offset + step * 6) % 37 + 1 for step in range(6))


def build_rows(count: int, start: int = 5300, latest: date = LATEST_DRAW_DATE) -> List[str]:
    rows = []
    for i in range(count):
        draw_date = latest - timedelta(days=3 * i)
        numbers = ",".join(str(n) for n in draw_numbers(i))
        rows.append(f"{start - i},{draw_date.strftime('%d/%m/%Y')},{numbers},{i % 7 + 1}")
    return rows


def build_csv(count: int, start: int = 5300, latest: date = LATEST_DRAW_DATE) -> str:
    return "\n".join([HEADER] + build_rows(count, start, latest))


def build_records(count: int, start: int = 5300, latest: date = LATEST_DRAW_DATE) -> List[DrawRecord]:
    return [
        DrawRecord(
            draw_number=start - i,
            draw_date=latest - timedelta(days=3 * i),
            numbers=draw_numbers(i),
            bonus=i % 7 + 1
        )
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        cache_dir=str(tmp_path / "cache"),
        output_dir=str(tmp_path / "out"),
        local_data_path=None,
        retry_delay=0.0,
    )


@pytest.fixture
def csv_payload():
    return build_csv


@pytest.fixture
def draw_records():
    return build_records
