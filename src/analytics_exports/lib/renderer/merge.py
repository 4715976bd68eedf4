"""Merge service: concatenates partial PDF documents in order."""

import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from PyPDF2 import PdfReader, PdfWriter


@dataclass(frozen=True)
class DocumentMetadata:
    """Document information stamped onto a final artifact."""

    title: str
    author: str
    subject: str

    def as_pdf_info(self) -> dict[str, str]:
        return {"/Title": self.title, "/Author": self.author, "/Subject": self.subject}


def page_count(path: Path) -> int:
    """Number of pages in a PDF file."""
    return len(PdfReader(str(path)).pages)


def stamp_metadata(path: Path, metadata: DocumentMetadata) -> None:
    """Rewrite a PDF in place with the given document information."""
    reader = PdfReader(str(path))
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    writer.add_metadata(metadata.as_pdf_info())
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("wb") as fh:
        writer.write(fh)
    tmp_path.replace(path)


def merge_documents(
    paths: Sequence[Path],
    output_path: Path,
    metadata: DocumentMetadata | None = None,
) -> int:
    """Concatenate PDFs into one artifact, preserving input order.

    A single input is copied through unchanged.  Metadata, when given, is
    stamped once on the merged result.

    Args:
        paths: Partial documents in the order they must appear.
        output_path: Destination path of the merged document.
        metadata: Optional title/author/subject for the final document.

    Returns:
        Page count of the merged document.

    Raises:
        ValueError: If no input documents are given.
    """
    if not paths:
        msg = "merge_documents requires at least one input document"
        raise ValueError(msg)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    if len(paths) == 1:
        shutil.copyfile(paths[0], output_path)
    else:
        writer = PdfWriter()
        for path in paths:
            for page in PdfReader(str(path)).pages:
                writer.add_page(page)
        with output_path.open("wb") as fh:
            writer.write(fh)
        logger.debug(f"Merged {len(paths)} documents into {output_path}")

    if metadata is not None:
        stamp_metadata(output_path, metadata)
    return page_count(output_path)
