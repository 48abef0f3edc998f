"""CSV export of draw records in the archive's own column layout."""
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd
import structlog

from lotto_refresh.refresh.models import NUMBERS_PER_DRAW, DrawRecord

logger = structlog.get_logger()

NUMBER_COLUMNS = [f"Num{i}" for i in range(1, NUMBERS_PER_DRAW + 1)]
CSV_COLUMNS = ["DrawNumber", "Date"] + NUMBER_COLUMNS + ["Bonus"]


def draws_to_dataframe(draws: List[DrawRecord]) -> pd.DataFrame:
    """
    Tabulate draws, most recent first.

    The result can be written out and parsed again by DrawParser.
    """
    rows = []
    for draw in draws:
        row = {"DrawNumber": draw.draw_number, "Date": draw.draw_date.strftime("%d/%m/%Y")}
        for column, num in zip(NUMBER_COLUMNS, draw.numbers):
            row[column] = num
        row["Bonus"] = draw.bonus
        rows.append(row)

    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.sort_values("DrawNumber", ascending=False)


class CSVWriter:
    """Writer for exporting draws to CSV files."""

    def __init__(self, output_dir: str = "./data/csv"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("csv_writer_initialized", output_dir=str(self.output_dir))

    def write(
        self,
        draws: List[DrawRecord],
        filename: Optional[str] = None
    ) -> Path:
        """
        Write draws to a CSV file.

        Args:
            draws: Draws to export
            filename: Optional custom filename. If None, generates timestamped name

        Returns:
            Path to the written file
        """
        if filename is None:
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            filename = f"lotto_draws_{timestamp}.csv"

        filepath = self.output_dir / filename
        temp_filepath = filepath.with_suffix('.tmp')

        try:
            df = draws_to_dataframe(draws)
            df.to_csv(temp_filepath, index=False)
            temp_filepath.replace(filepath)

            logger.info("csv_file_written", filepath=str(filepath), draws_count=len(draws))
            return filepath

        except Exception as e:
            logger.error("csv_write_failed", filepath=str(filepath), error=str(e))
            if temp_filepath.exists():
                temp_filepath.unlink()
            raise
