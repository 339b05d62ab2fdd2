import io
import os
from typing import BinaryIO, Union

import pdfplumber

from domain.errors import DocumentValidationError
from domain.models import ParsedContent


def _read(source: Union[str, BinaryIO]) -> ParsedContent:
    text_parts = []
    with pdfplumber.open(source) as pdf:
        for page in pdf.pages:
            t = page.extract_text() or ""
            text_parts.append(t)
    return ParsedContent(text="\n".join(text_parts), pages=len(text_parts))


def parse_pdf(path: str) -> ParsedContent:
    try:
        return _read(path)
    except Exception as exc:
        raise DocumentValidationError(f"Could not read document {os.path.basename(path)}: {exc}") from exc


def parse_pdf_bytes(data: bytes) -> ParsedContent:
    try:
        return _read(io.BytesIO(data))
    except Exception as exc:
        raise DocumentValidationError(f"Could not read document bytes: {exc}") from exc


def text_from_bytes(data: bytes) -> str:
    if data.startswith(b"%PDF"):
        return parse_pdf_bytes(data).text
    return data.decode("utf-8", errors="replace")
