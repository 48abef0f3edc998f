"""Plausible stand-in draws for when no real data can be obtained."""
import random
from datetime import date, timedelta
from typing import List, Optional

import structlog

from lotto_refresh.refresh.models import (
    BONUS_MAX,
    BONUS_MIN,
    MAIN_NUMBER_MAX,
    MAIN_NUMBER_MIN,
    NUMBERS_PER_DRAW,
    DrawRecord,
)

logger = structlog.get_logger()

CSV_HEADER = "DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6,Bonus"

BASE_DRAW_NUMBER = 5300
DEFAULT_DRAW_COUNT = 50
DAYS_BETWEEN_DRAWS = 3
# Each third of the range takes at most this many of the first four picks
MAX_PER_RANGE = 2


def _range_of(number: int) -> int:
    if number <= 12:
        return 0
    if number <= 25:
        return 1
    return 2


def generate_numbers(rng: random.Random) -> List[int]:
    """
    Six distinct main numbers spread across the low, mid and high thirds.

    Args:
        rng: Random source

    Returns:
        Sorted list of six numbers
    """
    numbers: List[int] = []
    per_range = [0, 0, 0]

    while len(numbers) < NUMBERS_PER_DRAW:
        num = rng.randint(MAIN_NUMBER_MIN, MAIN_NUMBER_MAX)
        if num in numbers:
            continue

        bucket = _range_of(num)
        if per_range[bucket] < MAX_PER_RANGE or len(numbers) >= 4:
            numbers.append(num)
            if per_range[bucket] < MAX_PER_RANGE:
                per_range[bucket] += 1

    return sorted(numbers)


def generate_draws(
    count: int = DEFAULT_DRAW_COUNT,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None
) -> List[DrawRecord]:
    """
    Generate synthetic draws, most recent first.

    Args:
        count: Number of draws to produce
        today: Date of the most recent draw, defaults to today
        rng: Random source, a fresh unseeded one by default

    Returns:
        List of DrawRecord objects
    """
    rng = rng or random.Random()
    today = today or date.today()

    draws = [
        DrawRecord(
            draw_number=BASE_DRAW_NUMBER - i,
            draw_date=today - timedelta(days=i * DAYS_BETWEEN_DRAWS),
            numbers=generate_numbers(rng),
            bonus=rng.randint(BONUS_MIN, BONUS_MAX)
        )
        for i in range(count)
    ]
    logger.warning("synthetic_draws_generated", count=len(draws))
    return draws


def to_csv(draws: List[DrawRecord]) -> str:
    """Render draws in the archive's day-first CSV layout."""
    lines = [CSV_HEADER]
    for draw in draws:
        numbers = ",".join(str(n) for n in draw.numbers)
        lines.append(
            f"{draw.draw_number},{draw.draw_date.strftime('%d/%m/%Y')},{numbers},{draw.bonus}"
        )
    return "\n".join(lines)


def generate_csv(
    count: int = DEFAULT_DRAW_COUNT,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None
) -> str:
    return to_csv(generate_draws(count, today, rng))
