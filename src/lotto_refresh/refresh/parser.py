"""CSV parser for extracting lottery draws from raw archive text."""
import time
from typing import Iterable, Iterator, List, Optional

import structlog
from pydantic import ValidationError

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.dates import parse_draw_date
from lotto_refresh.refresh.models import NUMBERS_PER_DRAW, DrawRecord

logger = structlog.get_logger()

MIN_COLUMNS = 3 + NUMBERS_PER_DRAW  # draw number, date, six numbers, bonus


class DrawParser:
    """Parser turning delimited draw text into DrawRecord objects."""

    def __init__(
        self,
        max_records: int = 1000,
        large_payload_threshold: int = 1024 * 1024,
        chunk_size: int = 10000,
        memory_optimization: bool = True
    ):
        """
        Initialize the parser.

        Args:
            max_records: Final size cap applied when parsing in chunks
            large_payload_threshold: Payload size above which chunked parsing is used
            chunk_size: Characters consumed per chunk
            memory_optimization: Enables chunked parsing and intermediate caps
        """
        self.max_records = max_records
        self.large_payload_threshold = large_payload_threshold
        self.chunk_size = chunk_size
        self.memory_optimization = memory_optimization

    @classmethod
    def from_settings(cls, settings: Settings) -> "DrawParser":
        return cls(
            max_records=settings.max_cache_size,
            large_payload_threshold=settings.large_payload_threshold,
            chunk_size=settings.parse_chunk_size,
            memory_optimization=settings.memory_optimization
        )

    def parse(self, raw_text: str) -> List[DrawRecord]:
        """
        Parse all draws from the raw text.

        The first non-empty line is treated as the header. Rows that cannot be
        turned into a valid DrawRecord are skipped.

        Args:
            raw_text: Comma separated text with a header row

        Returns:
            List of DrawRecord objects sorted by draw number, most recent first
        """
        if not raw_text:
            return []

        if self.memory_optimization and len(raw_text) > self.large_payload_threshold:
            logger.info(
                "parsing_large_payload_in_chunks",
                size_kb=round(len(raw_text) / 1024, 1),
                chunk_kb=round(self.chunk_size / 1024, 1)
            )
            return self._parse_in_chunks(raw_text)

        draws = self._parse_lines(raw_text.splitlines())
        draws.sort(key=lambda d: d.draw_number, reverse=True)
        logger.info("draw_parsing_completed", total_draws=len(draws))
        return draws

    def _parse_lines(self, lines: Iterable[str]) -> List[DrawRecord]:
        draws = []
        for line_number, line in self._data_lines(lines):
            draw = self.parse_row(line, line_number)
            if draw:
                draws.append(draw)
        return draws

    @staticmethod
    def _data_lines(lines: Iterable[str]) -> Iterator[tuple]:
        """Yield (line_number, stripped_line) for data rows, skipping the header."""
        header_skipped = False
        for line_number, line in enumerate(lines, 1):
            stripped = line.strip()
            if not stripped:
                continue
            if not header_skipped:
                header_skipped = True
                continue
            yield line_number, stripped

    def _iter_chunked_lines(self, raw_text: str) -> Iterator[str]:
        """Yield complete lines while consuming the text chunk by chunk."""
        buffer = ""
        for offset in range(0, len(raw_text), self.chunk_size):
            buffer += raw_text[offset:offset + self.chunk_size]
            lines = buffer.split("\n")
            buffer = lines.pop()
            yield from lines

            # Let other threads run between chunks
            time.sleep(0)

        if buffer:
            yield buffer

    def _parse_in_chunks(self, raw_text: str) -> List[DrawRecord]:
        draws: List[DrawRecord] = []
        intermediate_cap = self.max_records * 2

        for line_number, line in self._data_lines(self._iter_chunked_lines(raw_text)):
            draw = self.parse_row(line, line_number)
            if draw:
                draws.append(draw)

            if len(draws) > intermediate_cap:
                logger.debug("limiting_intermediate_results", records=len(draws))
                draws.sort(key=lambda d: d.draw_number, reverse=True)
                del draws[self.max_records:]

        draws.sort(key=lambda d: d.draw_number, reverse=True)
        logger.info("chunked_parsing_completed", total_draws=len(draws))

        if len(draws) > self.max_records:
            logger.info("trimming_parsed_results", limit=self.max_records)
            return draws[:self.max_records]

        return draws

    @staticmethod
    def parse_row(line: str, line_number: int = 0) -> Optional[DrawRecord]:
        """
        Parse a single data row.

        Args:
            line: One comma separated row
            line_number: Position in the payload, for logging

        Returns:
            DrawRecord object or None if the row is unusable
        """
        columns = [col.strip() for col in line.split(",")]

        if len(columns) < MIN_COLUMNS:
            logger.debug("row_skipped", line=line_number, reason="insufficient_columns")
            return None

        try:
            draw_number = int(columns[0])
            numbers = [int(col) for col in columns[2:2 + NUMBERS_PER_DRAW]]
            bonus = int(columns[2 + NUMBERS_PER_DRAW])
            draw_date = parse_draw_date(columns[1])
        except ValueError as e:
            logger.debug("row_skipped", line=line_number, reason=str(e))
            return None

        try:
            return DrawRecord(
                draw_number=draw_number,
                draw_date=draw_date,
                numbers=numbers,
                bonus=bonus
            )
        except ValidationError as e:
            logger.debug("row_skipped", line=line_number, reason="validation_failed", errors=e.error_count())
            return None
