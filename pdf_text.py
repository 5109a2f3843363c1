"""Statement text loading: PDF extraction via pypdf plus ASCII sanitization."""

from __future__ import annotations

import re
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ctfs_statement_parser import StatementError


class ExtractionError(StatementError):
    pass


CHARACTER_REPLACEMENTS = {
    # Smart quotes
    "\u2018": "'",
    "\u2019": "'",
    "\u201C": '"',
    "\u201D": '"',
    # En and em dashes
    "\u2013": "-",
    "\u2014": "-",
    # Non-breaking, en, em and thin spaces
    "\u00A0": " ",
    "\u2002": " ",
    "\u2003": " ",
    "\u2009": " ",
    # Cent, pound, yen and euro signs
    "\u00A2": "c",
    "\u00A3": "GBP",
    "\u00A5": "JPY",
    "\u20AC": "EUR",
    # Accented letters common in Canadian French merchant names
    "\u00E0": "a",
    "\u00E1": "a",
    "\u00E2": "a",
    "\u00E8": "e",
    "\u00E9": "e",
    "\u00EA": "e",
    "\u00EB": "e",
    "\u00EE": "i",
    "\u00EF": "i",
    "\u00F4": "o",
    "\u00F9": "u",
    "\u00FB": "u",
    "\u00FC": "u",
    "\u00E7": "c",
    "\u00C0": "A",
    "\u00C9": "E",
    "\u00C8": "E",
}


def sanitize_text(text: str) -> str:
    """Map known special characters to ASCII and drop everything else outside printable ASCII."""

    if not text:
        return text
    out = []
    for ch in text:
        replacement = CHARACTER_REPLACEMENTS.get(ch)
        if replacement is not None:
            out.append(replacement)
        elif ch in "\n\r\t" or " " <= ch <= "~":
            out.append(ch)
    return "".join(out)


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def extract_pdf_text(pdf_path: Path) -> str:
    try:
        reader = PdfReader(str(pdf_path))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, OSError) as exc:
        raise ExtractionError(f"Could not read PDF {pdf_path}: {exc}") from exc
    if not pages:
        raise ExtractionError(f"PDF has no pages: {pdf_path}")
    return sanitize_text(normalize_newlines("\n".join(pages) + "\n"))


def load_statement_text(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return extract_pdf_text(path)
    if suffix == ".txt":
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Could not read text file {path}: {exc}") from exc
        return sanitize_text(normalize_newlines(raw))
    raise ExtractionError(f"Unsupported statement file type {path.suffix!r}: {path}")
