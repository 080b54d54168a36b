import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import fitz  # PyMuPDF

from certprep.core.errors import PdfExtractionError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedText:
    text: str
    page_count: int


def extract_text(pdf_path: Union[str, Path]) -> ExtractedText:
    try:
        with fitz.open(pdf_path) as doc:
            parts = [page.get_text("text") for page in doc]
            page_count = doc.page_count
    except (fitz.FileDataError, RuntimeError, OSError) as e:
        raise PdfExtractionError(f"Failed to extract text from PDF: {e}") from e
    text = "\n".join(parts).strip()
    logger.debug("Extracted %d chars from %d pages of %s", len(text), page_count, pdf_path)
    return ExtractedText(text=text, page_count=page_count)
