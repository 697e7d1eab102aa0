import io
import sys
from pathlib import Path
from typing import Sequence, Tuple

import fitz
import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def make_image(size: Tuple[int, int] = (400, 600), color="white", fmt: str = "JPEG", **save_kwargs) -> bytes:
    mode = "RGBA" if fmt == "PNG" and isinstance(color, tuple) and len(color) == 4 else "RGB"
    img = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_pdf(texts: Sequence[str]) -> bytes:
    """One A4 page per text, with the text written near the top-left corner."""
    doc = fitz.open()
    for text in texts:
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def open_pdf(data: bytes) -> fitz.Document:
    return fitz.open(stream=data, filetype="pdf")


@pytest.fixture()
def template_pdf() -> bytes:
    return make_pdf(["TEMPLATE PAGE 1", "TEMPLATE PAGE 2"])
