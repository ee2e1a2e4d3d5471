"""
Decoder registry: raw uploaded bytes -> one SourcePayload.

Decoders are tried in registration order and the first one whose predicate
matches wins. Everything here is pure; nothing touches session state.
"""
import asyncio
import io
import logging
import mimetypes
from typing import Callable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError
from .models import DocumentPayload, ImagePayload, PlainTextPayload, SourcePayload

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
WORD_EXTENSIONS = (".docx",)
SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# Browsers send this when they have no idea; treat it like no declaration.
_UNDECLARED = {"", "application/octet-stream"}


def detect_media_type(data: bytes, filename: str) -> str:
    """Best guess at a media type when the upload did not declare one."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "")
            if mime:
                return mime
    except (UnidentifiedImageError, OSError):
        pass
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or ""


def _is_image(data: bytes, filename: str, media_type: str) -> bool:
    return media_type.startswith("image/")


def _is_pdf(data: bytes, filename: str, media_type: str) -> bool:
    return media_type == PDF_MEDIA_TYPE


def _is_word(data: bytes, filename: str, media_type: str) -> bool:
    return filename.lower().endswith(WORD_EXTENSIONS)


def _is_spreadsheet(data: bytes, filename: str, media_type: str) -> bool:
    return filename.lower().endswith(SPREADSHEET_EXTENSIONS)


def _always(data: bytes, filename: str, media_type: str) -> bool:
    return True


def decode_image(data: bytes, filename: str, media_type: str) -> ImagePayload:
    return ImagePayload(data=data, media_type=media_type)


def decode_pdf(data: bytes, filename: str, media_type: str) -> DocumentPayload:
    return DocumentPayload(data=data, media_type=media_type, filename=filename or "source.pdf")


def decode_word(data: bytes, filename: str, media_type: str) -> PlainTextPayload:
    from docx import Document
    from docx.table import Table

    try:
        doc = Document(io.BytesIO(data))
    except Exception as e:
        logger.error(f"Word extraction failed for {filename}: {e}")
        raise DecodeError(filename, str(e)) from e

    # paragraphs and tables in document order
    blocks = []
    for block in doc.iter_inner_content():
        if isinstance(block, Table):
            for row in block.rows:
                blocks.append("\t".join(cell.text for cell in row.cells))
        else:
            blocks.append(block.text)
    return PlainTextPayload(text="\n\n".join(blocks))


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _rows_to_text(rows) -> str:
    return "\n".join("\t".join(_cell_text(v) for v in row) for row in rows)


def _openxml_sheets(data: bytes):
    from openpyxl import load_workbook

    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        return [(ws.title, _rows_to_text(ws.iter_rows(values_only=True))) for ws in wb.worksheets]
    finally:
        wb.close()


def _biff_sheets(data: bytes):
    import xlrd

    book = xlrd.open_workbook(file_contents=data)
    try:
        return [
            (sh.name, _rows_to_text(sh.row_values(r) for r in range(sh.nrows)))
            for sh in book.sheets()
        ]
    finally:
        book.release_resources()


def decode_spreadsheet(data: bytes, filename: str, media_type: str) -> PlainTextPayload:
    # legacy .xls workbooks are OLE2 compound files; everything else is OOXML
    reader = _biff_sheets if data.startswith(OLE2_SIGNATURE) else _openxml_sheets
    try:
        sheets = reader(data)
    except Exception as e:
        logger.error(f"Spreadsheet extraction failed for {filename}: {e}")
        raise DecodeError(filename, str(e)) from e
    return PlainTextPayload(text="\n\n".join(f"Sheet: {name}\n{text}" for name, text in sheets))


def decode_plain_text(data: bytes, filename: str, media_type: str) -> PlainTextPayload:
    return PlainTextPayload(text=data.decode("utf-8-sig", errors="replace"))


Predicate = Callable[[bytes, str, str], bool]
Decoder = Callable[[bytes, str, str], object]

DECODERS: List[Tuple[str, Predicate, Decoder]] = [
    ("image", _is_image, decode_image),
    ("pdf", _is_pdf, decode_pdf),
    ("word", _is_word, decode_word),
    ("spreadsheet", _is_spreadsheet, decode_spreadsheet),
    ("plain_text", _always, decode_plain_text),
]


def decode_source(data: bytes, filename: str, media_type: Optional[str] = None) -> SourcePayload:
    media_type = (media_type or "").strip().lower()
    if media_type in _UNDECLARED:
        media_type = detect_media_type(data, filename)

    for name, matches, decoder in DECODERS:
        if matches(data, filename, media_type):
            logger.info(f"Decoding {filename} ({media_type or 'unknown type'}) with {name} decoder")
            return decoder(data, filename, media_type)
    # the plain-text decoder always matches
    raise DecodeError(filename, "no decoder matched")


async def decode_upload(data: bytes, filename: str, media_type: Optional[str] = None) -> SourcePayload:
    """Awaitable decode; word/spreadsheet parsing runs off the event loop."""
    return await asyncio.to_thread(decode_source, data, filename, media_type)
