"""Delimiter detection for delimited text sources."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

DEFAULT_DELIMITER = ","
CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|", ":")

# Number of leading lines sampled from the source
SAMPLE_LINES = 10


def score_delimiter(lines: Iterable[str], delimiter: str) -> int:
    """
    Score a delimiter by how consistently it splits the sample lines.

    Lines without the delimiter are ignored. Identical counts on every line
    score ``count * 10``; otherwise the score falls with the variance.
    """
    counts = [line.count(delimiter) for line in lines if line.strip()]
    counts = [count for count in counts if count > 0]
    if not counts:
        return 0

    if len(set(counts)) == 1:
        return counts[0] * 10

    mean = sum(counts) / len(counts)
    variance = sum((count - mean) ** 2 for count in counts) / len(counts)
    return max(1, int(mean * 5 - variance))


def detect_from_lines(
    lines: Sequence[str],
    candidates: Sequence[str] = CANDIDATE_DELIMITERS,
) -> str:
    """Pick the best-scoring delimiter, falling back to a comma."""
    if not lines:
        return DEFAULT_DELIMITER

    scores = {delimiter: score_delimiter(lines, delimiter) for delimiter in candidates}
    best = max(candidates, key=lambda d: scores[d])

    if scores[best] < 2:
        return DEFAULT_DELIMITER
    return best


def detect_delimiter(
    path: str | Path,
    candidates: Sequence[str] = CANDIDATE_DELIMITERS,
) -> str:
    """Detect the delimiter of a file from its first lines."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as f:
            lines = []
            for line in f:
                lines.append(line.strip("\r\n"))
                if len(lines) >= SAMPLE_LINES:
                    break
    except OSError:
        return DEFAULT_DELIMITER

    return detect_from_lines(lines, candidates)
