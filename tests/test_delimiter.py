from __future__ import annotations

from pathlib import Path

import pytest

from checkpointed_etl.steps.delimiter import detect_delimiter, detect_from_lines, score_delimiter


@pytest.mark.parametrize(
    "lines, expected",
    [
        (["a,b,c", "1,2,3", "4,5,6"], ","),
        (["a;b;c", "1;2;3"], ";"),
        (["a\tb\tc", "1\t2\t3"], "\t"),
        (["a|b", "1|2"], "|"),
        (["single column", "value"], ","),
        ([], ","),
    ],
)
def test_detect_from_lines(lines: list[str], expected: str) -> None:
    assert detect_from_lines(lines) == expected


def test_consistent_counts_beat_inconsistent() -> None:
    lines = ["a;b;c,d", "1;2;3", "4;5;6,7,8"]

    assert score_delimiter(lines, ";") == 20
    assert score_delimiter(lines, ",") < score_delimiter(lines, ";")
    assert detect_from_lines(lines) == ";"


def test_detect_delimiter_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "data.tsv"
    path.write_text("id\tname\r\n1\tx\r\n2\ty\r\n")

    assert detect_delimiter(path) == "\t"


def test_detect_delimiter_missing_file(tmp_path: Path) -> None:
    assert detect_delimiter(tmp_path / "missing.csv") == ","
