"""Renderer library: spreadsheet writer, document renderer and merge service.

Public API:
    - SpreadsheetWriter: Resumable row spool streamed into an xlsx workbook
    - SheetSpec: Title and header row of one worksheet
    - DocumentRenderer: Renders row windows, contents and empty reports to PDF
    - merge_documents: Concatenates partial PDFs in order
    - DocumentMetadata: Title/author/subject stamped on final documents
    - page_count: Page count of a PDF file
"""

from analytics_exports.lib.renderer.document import DocumentRenderer, format_value
from analytics_exports.lib.renderer.merge import DocumentMetadata, merge_documents, page_count, stamp_metadata
from analytics_exports.lib.renderer.spreadsheet import SheetSpec, SpreadsheetWriter, sheet_title

__all__ = [
    "DocumentMetadata",
    "DocumentRenderer",
    "SheetSpec",
    "SpreadsheetWriter",
    "format_value",
    "merge_documents",
    "page_count",
    "sheet_title",
    "stamp_metadata",
]
