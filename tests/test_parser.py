from datetime import date

from conftest import HEADER, build_csv

from lotto_refresh.refresh.parser import DrawParser


def test_parse_skips_header_and_sorts_descending() -> None:
    raw = "\n".join([
        HEADER,
        "5298,10/07/2024,7,12,19,24,29,35,4",
        "5300,16/07/2024,3,14,22,25,33,37,5",
        "5299,13.07.2024,1,8,15,28,31,36,2",
    ])

    draws = DrawParser().parse(raw)

    assert [d.draw_number for d in draws] == [5300, 5299, 5298]
    assert draws[0].draw_date == date(2024, 7, 16)
    assert draws[1].draw_date == date(2024, 7, 13)
    assert draws[0].numbers == [3, 14, 22, 25, 33, 37]
    assert draws[0].bonus == 5


def test_parse_tolerates_crlf_blank_lines_and_extra_columns() -> None:
    raw = (
        "DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6,Bonus,Extra1,Extra2\r\n"
        "\r\n"
        "5300,16/07/2024,3,14,22,25,33,37,5,,\r\n"
        "5299,13/07/2024,1,8,15,28,31,36,2,,\r\n"
    )

    draws = DrawParser().parse(raw)

    assert len(draws) == 2


def test_parse_drops_malformed_rows() -> None:
    raw = "\n".join([
        HEADER,
        "5300,16/07/2024,3,14,22,25,33,37,5",
        "5299,13/07/2024,1,8,15",
        "5298,not-a-date,7,12,19,24,29,35,4",
        "5297,07/07/2024,5,5,12,18,25,33,1",
        "5296,04/07/2024,1,2,3,4,5,40,1",
        "5295,01/07/2024,1,2,3,4,5,6,9",
        "abc,01/07/2024,1,2,3,4,5,6,3",
        "5294,28/06/2024,2,9,16,23,30,37,6",
    ])

    draws = DrawParser().parse(raw)

    assert [d.draw_number for d in draws] == [5300, 5294]


def test_parse_empty_input() -> None:
    assert DrawParser().parse("") == []
    assert DrawParser().parse(HEADER) == []


def test_chunked_parse_matches_plain_parse() -> None:
    raw = build_csv(120)
    plain = DrawParser(large_payload_threshold=len(raw) + 1).parse(raw)
    chunked = DrawParser(large_payload_threshold=100, chunk_size=257).parse(raw)

    assert chunked == plain
    assert len(chunked) == 120


def test_chunked_parse_keeps_most_recent_up_to_limit() -> None:
    raw = build_csv(120)

    draws = DrawParser(max_records=25, large_payload_threshold=100, chunk_size=64).parse(raw)

    assert len(draws) == 25
    assert draws[0].draw_number == 5300
    assert draws[-1].draw_number == 5276


def test_chunking_disabled_without_memory_optimization() -> None:
    raw = build_csv(40)

    draws = DrawParser(max_records=10, large_payload_threshold=10, memory_optimization=False).parse(raw)

    assert len(draws) == 40


def test_parse_row_returns_none_for_short_rows() -> None:
    assert DrawParser.parse_row("1,2,3") is None
