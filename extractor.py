import csv
import io
import logging
import threading
from functools import cmp_to_key
from typing import List, NamedTuple, Sequence

import fitz
import pandas as pd
from docx import Document
from docx.table import Table

from models import FileKind, UploadedFile, file_extension

logger = logging.getLogger(__name__)

# =============================
# CONFIG
# =============================

# Fragments whose baselines differ by no more than this are on one line.
LINE_TOLERANCE = 5.0
COLUMN_SEPARATOR = " | "

# MuPDF prints repair warnings for damaged files; failures still raise.
fitz.TOOLS.mupdf_display_errors(False)

# MuPDF documents must not be used from several threads at once.
_MUPDF_LOCK = threading.Lock()

PDF_EXTENSIONS = {"pdf"}
SPREADSHEET_EXTENSIONS = {"xlsx", "xls", "csv"}
WORD_EXTENSIONS = {"docx"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}

CSV_SHEET_NAME = "Sheet1"


class ExtractionError(Exception):
    """A file could not be read by the handler for its kind."""

    def __init__(self, filename: str, cause: Exception):
        self.filename = filename
        self.cause = cause
        super().__init__(f"{filename}: {cause}")


class TextFragment(NamedTuple):
    x: float
    y: float
    text: str


def classify(filename: str) -> FileKind:
    ext = file_extension(filename)
    if ext in PDF_EXTENSIONS:
        return FileKind.PDF
    if ext in SPREADSHEET_EXTENSIONS:
        return FileKind.SPREADSHEET
    if ext in WORD_EXTENSIONS:
        return FileKind.WORD
    if ext in IMAGE_EXTENSIONS:
        return FileKind.IMAGE
    return FileKind.PLAIN_TEXT


# =============================
# PDF
# =============================

def _reading_order(a: TextFragment, b: TextFragment) -> float:
    y_diff = b.y - a.y
    if abs(y_diff) > LINE_TOLERANCE:
        return y_diff
    return a.x - b.x


def layout_fragments(fragments: Sequence[TextFragment]) -> str:
    """
    Rebuilds lines from positioned fragments given in PDF user space
    (y grows upward). Top of the page comes first; fragments on the same
    line are joined with a column separator so tables stay readable.
    """
    ordered = sorted(fragments, key=cmp_to_key(_reading_order))

    out = []
    last_y = None
    for frag in ordered:
        if last_y is not None:
            if abs(frag.y - last_y) > LINE_TOLERANCE:
                out.append("\n")
            else:
                out.append(COLUMN_SEPARATOR)
        out.append(frag.text)
        last_y = frag.y
    return "".join(out)


def page_fragments(page) -> List[TextFragment]:
    """
    Collects text spans of a page with their baseline origin mapped back
    to PDF user space.
    """
    to_pdf_space = ~page.transformation_matrix
    fragments = []
    for block in page.get_text("dict")["blocks"]:
        for line in block.get("lines", []):
            for span in line["spans"]:
                if not span["text"]:
                    continue
                origin = fitz.Point(span["origin"]) * to_pdf_space
                fragments.append(TextFragment(origin.x, origin.y, span["text"]))
    return fragments


def extract_pdf(data: bytes) -> str:
    with _MUPDF_LOCK:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            if doc.needs_pass:
                raise ValueError("PDF is password protected")
            if len(doc) < 1:
                raise ValueError("Empty document")

            full_text = ""
            for number, page in enumerate(doc, start=1):
                page_text = f"--- Page {number} ---\n"
                page_text += layout_fragments(page_fragments(page))
                full_text += page_text + "\n\n"
        finally:
            doc.close()
    return full_text


# =============================
# SPREADSHEET / WORD / TEXT
# =============================

def _rows_to_csv(rows) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerows(rows)
    csv_text = buf.getvalue()
    return csv_text[:-1] if csv_text.endswith("\n") else csv_text


def _sheet_to_csv(df: pd.DataFrame) -> str:
    return _rows_to_csv(df.itertuples(index=False, name=None))


def _read_csv_rows(data: bytes) -> List[List[str]]:
    # row by row, so a title line above a wider table is kept as-is
    text = extract_plain(data)
    return list(csv.reader(io.StringIO(text, newline="")))


def extract_spreadsheet(data: bytes, extension: str) -> str:
    """
    Flattens every sheet to CSV, in workbook order. A CSV upload is read
    as a workbook with a single sheet.
    """
    if extension == "csv":
        sheets = {CSV_SHEET_NAME: _rows_to_csv(_read_csv_rows(data))}
    else:
        workbook = pd.read_excel(
            io.BytesIO(data), sheet_name=None, header=None, dtype=str, keep_default_na=False
        )
        sheets = {name: _sheet_to_csv(df) for name, df in workbook.items()}

    full_text = ""
    for sheet_name, csv_text in sheets.items():
        full_text += f"--- Sheet: {sheet_name} (CSV Format) ---\n"
        full_text += csv_text + "\n\n"
    return full_text


def _block_texts(container) -> List[str]:
    """Paragraph texts in document order, descending into table cells."""
    texts = []
    for block in container.iter_inner_content():
        if isinstance(block, Table):
            for row in block.rows:
                seen = set()
                for cell in row.cells:
                    # merged cells are repeated across the grid
                    if cell._tc in seen:
                        continue
                    seen.add(cell._tc)
                    texts.extend(_block_texts(cell))
        else:
            texts.append(block.text)
    return texts


def extract_docx(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    return "\n\n".join(_block_texts(doc))


def extract_plain(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


_DOCUMENT_EXTRACTORS = {
    FileKind.PDF: lambda f: extract_pdf(f.data),
    FileKind.SPREADSHEET: lambda f: extract_spreadsheet(f.data, f.extension),
    FileKind.WORD: lambda f: extract_docx(f.data),
    FileKind.PLAIN_TEXT: lambda f: extract_plain(f.data),
}


def extract_text(file: UploadedFile) -> str:
    """
    Converts one uploaded document to text. Raises ExtractionError naming
    the file when its handler cannot parse it. Images carry no text; the
    batch processor routes them to image intake, and passing one here is
    an ExtractionError too.
    """
    kind = classify(file.filename)
    handler = _DOCUMENT_EXTRACTORS.get(kind)
    if handler is None:
        raise ExtractionError(file.filename, ValueError(f"{kind.value} files have no text to extract"))
    try:
        return handler(file)
    except Exception as e:
        logger.warning("extraction failed for %s (%s)", file.filename, kind.value)
        raise ExtractionError(file.filename, e) from e
