"""Tabular spreadsheet output.

Rows are appended to an on-disk JSON-lines spool while the export runs and
streamed into an openpyxl write-only workbook once the last window is in.
The spool is the resumable part: its byte offset after each window is what
a checkpoint records, and a resumed run truncates it back to that offset.
"""

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import IO, Any

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Font

_FORMULA_PREFIXES = frozenset("=+-@\t\r")
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")
_MAX_SHEET_TITLE = 31


@dataclass(frozen=True)
class SheetSpec:
    """Title and header row of one worksheet."""

    title: str
    headers: tuple[str, ...]


def _sanitize_cell(value: object) -> object:
    """Prepare a value for a spreadsheet cell.

    Text starting with a formula-triggering character is prefixed with a
    single quote so spreadsheet applications never evaluate it.  Excel
    has no timezone support, so aware datetimes are stored as naive UTC.

    Args:
        value: The raw row value.

    Returns:
        The cell-safe value.
    """
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return {"$decimal": str(value)}
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    msg = f"Cannot spool value of type {type(value).__name__}"
    raise TypeError(msg)


def _decode(obj: dict[str, Any]) -> Any:
    if "$decimal" in obj:
        return Decimal(obj["$decimal"])
    if "$datetime" in obj:
        return datetime.fromisoformat(obj["$datetime"])
    if "$date" in obj:
        return date.fromisoformat(obj["$date"])
    return obj


def sheet_title(title: str, used: set[str]) -> str:
    """Make a worksheet title valid and unique within a workbook."""
    base = _INVALID_SHEET_CHARS.sub("_", title).strip("'") or "Sheet"
    candidate = base[:_MAX_SHEET_TITLE]
    suffix = 2
    while candidate.lower() in used:
        tail = f" ({suffix})"
        candidate = base[: _MAX_SHEET_TITLE - len(tail)] + tail
        suffix += 1
    used.add(candidate.lower())
    return candidate


class SpreadsheetWriter:
    """Streams export rows through a resumable spool into an xlsx workbook.

    Args:
        spool_path: Location of the JSON-lines row spool.
    """

    def __init__(self, spool_path: Path) -> None:
        self.spool_path = spool_path
        self._spool: IO[bytes] | None = None
        self._offset = 0

    @property
    def offset(self) -> int:
        """Spool byte offset after the last fully written window."""
        return self._offset

    def open(self, resume_offset: int | None = None) -> int:
        """Open the spool, discarding anything past ``resume_offset``.

        Args:
            resume_offset: Offset recorded by a checkpoint, or None to start over.

        Returns:
            The offset writing continues from.

        Raises:
            FileNotFoundError: If a resume is requested but the spool is gone.
        """
        self.spool_path.parent.mkdir(parents=True, exist_ok=True)
        if resume_offset is None:
            self._spool = self.spool_path.open("w+b")
        else:
            self._spool = self.spool_path.open("r+b")
            self._spool.truncate(resume_offset)
        self._spool.seek(0, 2)
        self._offset = self._spool.tell()
        return self._offset

    def append_rows(self, sheet_index: int, rows: Iterable[Sequence[Any]]) -> int:
        """Append cell rows for one worksheet and flush them to disk.

        Args:
            sheet_index: Index into the sheets passed to :meth:`finalize`.
            rows: Row values in column order.

        Returns:
            The spool offset after the write.
        """
        if self._spool is None:
            msg = "Spool is not open. Call open() first."
            raise RuntimeError(msg)
        for row in rows:
            line = json.dumps([sheet_index, [_sanitize_cell(v) for v in row]], default=_encode)
            self._spool.write(line.encode("utf-8") + b"\n")
        self._spool.flush()
        self._offset = self._spool.tell()
        return self._offset

    def close(self) -> None:
        if self._spool is not None:
            self._spool.close()
            self._spool = None

    def finalize(self, sheets: Sequence[SheetSpec], output_path: Path) -> int:
        """Build the workbook from the spool.

        Worksheets are created in spool order the first time one of their
        rows appears; a workbook with no rows at all still gets the first
        sheet with its header row.

        Args:
            sheets: Sheet specs addressed by the spooled sheet indexes.
            output_path: Destination ``.xlsx`` path.

        Returns:
            Size of the written workbook in bytes.
        """
        self.close()
        workbook = Workbook(write_only=True)
        used_titles: set[str] = set()
        current_index: int | None = None
        worksheet = None

        def start_sheet(index: int):
            spec = sheets[index]
            ws = workbook.create_sheet(title=sheet_title(spec.title, used_titles))
            header = []
            for text in spec.headers:
                cell = WriteOnlyCell(ws, value=text)
                cell.font = Font(bold=True)
                header.append(cell)
            ws.append(header)
            return ws

        if self.spool_path.exists():
            with self.spool_path.open("rb") as spool:
                for line in spool:
                    sheet_index, values = json.loads(line, object_hook=_decode)
                    if sheet_index != current_index:
                        worksheet = start_sheet(sheet_index)
                        current_index = sheet_index
                    worksheet.append(values)

        if current_index is None and sheets:
            start_sheet(0)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(output_path)
        return output_path.stat().st_size
