"""Reference steps for delimited text (CSV/TSV) sources.

    validate -> detect_delimiter -> parse_headers -> create_storage -> process_rows

Bookkeeping steps report problems as partial errors and never fail the run.
"""

from __future__ import annotations

import csv
import os
import re
import time
from pathlib import Path
from typing import Any, Iterator, Optional

from checkpointed_etl.steps.base import StepHandler, StepOutcome, StepReturn
from checkpointed_etl.steps.delimiter import DEFAULT_DELIMITER, detect_delimiter
from checkpointed_etl.steps.storage import TemporaryStorage
from checkpointed_etl.utils.result import Ok

DEFAULT_CHUNK_SIZE = 1000


def clean_column_name(name: str) -> str:
    """Normalize a header to snake_case, dropping parenthesized notes."""
    cleaned = re.sub(r"\s*\([^)]*\)\s*", "", name.strip())
    cleaned = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", cleaned)
    cleaned = re.sub(r"[^a-zA-Z0-9\s_]", "", cleaned)
    cleaned = re.sub(r"\s+", "_", cleaned).lower()
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned.strip("_")


def _reader_options(context, config: dict[str, Any]) -> dict[str, Any]:
    return {
        "delimiter": context.get("delimiter", DEFAULT_DELIMITER),
        "quotechar": config.get("enclosure", '"'),
        "escapechar": config.get("escape") or None,
    }


def _iter_records(source: str, **reader_options: Any) -> Iterator[list[str]]:
    with open(source, encoding="utf-8", errors="replace", newline="") as f:
        yield from csv.reader(f, **reader_options)


class ValidateSource(StepHandler):
    """Reports a missing, unreadable or empty source."""

    name = "validate"

    def execute(self, source, options, config, context) -> StepReturn:
        errors = []
        path = Path(source)

        if not path.exists():
            errors.append(f"Source file does not exist: {source}")
        elif not os.access(path, os.R_OK):
            errors.append(f"Source file is not readable: {source}")
        elif path.stat().st_size == 0:
            errors.append(f"Source file is empty: {source}")

        return Ok(StepOutcome(failed=1 if errors else 0, errors=errors))


class DetectDelimiter(StepHandler):
    name = "detect_delimiter"
    provides = ("delimiter",)

    def execute(self, source, options, config, context) -> StepReturn:
        delimiter = config.get("delimiter")

        if not delimiter or config.get("auto_detect_delimiter", False):
            delimiter = detect_delimiter(source)
            context.set("detected_delimiter", delimiter)

        context.set("delimiter", delimiter)
        return Ok(StepOutcome())


class ParseHeaders(StepHandler):
    name = "parse_headers"
    provides = ("headers",)

    def execute(self, source, options, config, context) -> StepReturn:
        if not config.get("has_headers", True):
            return Ok(StepOutcome())

        errors = []
        try:
            records = _iter_records(source, **_reader_options(context, config))
            raw_headers: Optional[list[str]] = next(records, None)
            records.close()
        except (OSError, csv.Error) as e:
            return Ok(StepOutcome.from_errors([f"Error parsing headers: {e}"]))

        if not raw_headers:
            errors.append("Could not parse headers from CSV file")
        else:
            headers = self.process_headers(raw_headers, config)
            context.set("raw_headers", raw_headers)
            context.set("headers", headers)
            context.set("header_count", len(headers))

        return Ok(StepOutcome.from_errors(errors))

    @staticmethod
    def process_headers(raw_headers: list[str], config: dict[str, Any]) -> list[str]:
        """Apply explicit columns, then column mapping, then name cleaning."""
        columns = config.get("columns")
        if columns is not None:
            return list(columns)

        mapping = config.get("column_mapping", {}) or {}
        clean = config.get("clean_column_names", True)

        headers = []
        for index, header in enumerate(raw_headers):
            if header in mapping:
                name = mapping[header]
            elif clean:
                name = clean_column_name(header) or f"column_{index + 1}"
            else:
                name = header
            headers.append(name)
        return headers


class CreateStorage(StepHandler):
    name = "create_storage"
    requires = ("headers",)
    provides = ("storage_path",)

    def execute(self, source, options, config, context) -> StepReturn:
        headers = context.get("headers", [])
        if not headers:
            return Ok(StepOutcome.from_errors(["No headers available for storage creation"]))

        try:
            storage = TemporaryStorage.create(headers, path=config.get("storage_path"))
        except Exception as e:
            return Ok(StepOutcome.from_errors([f"Failed to create temporary storage: {e}"]))

        context.set("storage_path", str(storage.path))
        context.set("temporary_storage", storage, transient=True)
        return Ok(StepOutcome())


class ProcessRows(StepHandler):
    """
    Streams data rows into temporary storage in chunks.

    After every chunk the row position is stored as ``last_processed_line``
    next to the running totals in ``rows_processed``, ``rows_imported``,
    ``rows_failed`` and ``row_errors``, and the context is checkpointed. A
    resumed run skips rows that were already inserted and reports them in
    its totals. ``max_rows_per_second`` throttles the insert rate.
    """

    name = "process_rows"
    requires = ("storage_path",)

    def execute(self, source, options, config, context) -> StepReturn:
        storage = self._storage(context)
        if storage is None:
            return Ok(StepOutcome.from_errors(["No temporary storage available"]))

        has_headers = config.get("has_headers", True)
        chunk_size = max(1, int(config.get("chunk_size", DEFAULT_CHUNK_SIZE)))
        max_rows_per_second = float(config.get("max_rows_per_second", 0) or 0)
        last_line = int(context.get("last_processed_line", 0) or 0)

        processed = int(context.get("rows_processed", 0) or 0) if last_line else 0
        imported = int(context.get("rows_imported", 0) or 0) if last_line else 0
        failed = int(context.get("rows_failed", 0) or 0) if last_line else 0
        errors: list[str] = list(context.get("row_errors", []) or []) if last_line else []
        carried = processed
        chunk: list[list[str]] = []
        line = 0
        started = time.monotonic()

        def flush() -> None:
            nonlocal imported, failed
            inserted = storage.insert_batch(chunk)
            imported += inserted
            failed += len(chunk) - inserted
            if inserted < len(chunk):
                errors.append(
                    f"Lines {line - len(chunk) + 1}-{line}: "
                    f"{len(chunk) - inserted} row(s) did not match {len(storage.columns)} columns"
                )
            chunk.clear()
            context.merge({
                "last_processed_line": line,
                "rows_processed": processed,
                "rows_imported": imported,
                "rows_failed": failed,
                "row_errors": list(errors),
            })
            context.checkpoint()

            if max_rows_per_second > 0:
                expected = (processed - carried) / max_rows_per_second
                elapsed = time.monotonic() - started
                if expected > elapsed:
                    time.sleep(expected - elapsed)

        try:
            records = _iter_records(source, **_reader_options(context, config))
            if has_headers:
                next(records, None)

            for record in records:
                line += 1
                if line <= last_line or not record:
                    continue
                chunk.append(record)
                processed += 1
                if len(chunk) >= chunk_size:
                    flush()

            if chunk:
                flush()
        except (OSError, csv.Error) as e:
            errors.append(f"Error processing rows: {e}")
            failed += 1

        return Ok(StepOutcome(
            processed=processed,
            imported=imported,
            failed=failed,
            errors=errors,
        ))

    @staticmethod
    def _storage(context) -> Optional[TemporaryStorage]:
        storage = context.get("temporary_storage")
        if storage is not None:
            return storage

        path = context.get("storage_path")
        if not path or not Path(path).exists():
            return None

        storage = TemporaryStorage.open(path, context.get("headers", []))
        context.set("temporary_storage", storage, transient=True)
        return storage
