"""JSON export of draw records."""
import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from lotto_refresh.refresh.models import DrawExport, DrawRecord, ExportMetadata
from lotto_refresh.storage.hashing import hash_records

logger = structlog.get_logger()


def build_metadata(draws: List[DrawRecord], source: str = "cache") -> ExportMetadata:
    """Summarize a set of draws for an export header."""
    dates = [d.draw_date for d in draws]
    return ExportMetadata(
        total_draws=len(draws),
        date_range_start=min(dates) if dates else None,
        date_range_end=max(dates) if dates else None,
        source=source,
        data_hash=hash_records(draws) if draws else None
    )


class JSONWriter:
    """Writer for exporting draws to JSON files."""

    def __init__(self, output_dir: str = "./data/json"):
        """
        Initialize JSON writer.

        Args:
            output_dir: Directory to write JSON files to
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("json_writer_initialized", output_dir=str(self.output_dir))

    def write(
        self,
        draws: List[DrawRecord],
        metadata: Optional[ExportMetadata] = None,
        filename: Optional[str] = None
    ) -> Path:
        """
        Write draws to a JSON file.

        Args:
            draws: Draws to export
            metadata: Export metadata, derived from the draws when omitted
            filename: Optional custom filename. If None, generates timestamped name

        Returns:
            Path to the written file
        """
        if filename is None:
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            filename = f"lotto_draws_{timestamp}.json"

        filepath = self.output_dir / filename
        temp_filepath = filepath.with_suffix('.tmp')

        export = DrawExport(metadata=metadata or build_metadata(draws), draws=draws)

        try:
            with open(temp_filepath, 'w', encoding='utf-8') as f:
                json.dump(export.model_dump(mode='json'), f, indent=2, ensure_ascii=False)

            temp_filepath.replace(filepath)

            logger.info("json_file_written", filepath=str(filepath), draws_count=len(draws))
            return filepath

        except Exception as e:
            logger.error("json_write_failed", filepath=str(filepath), error=str(e))
            if temp_filepath.exists():
                temp_filepath.unlink()
            raise
