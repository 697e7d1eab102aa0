# pdf_utils.py
"""
Homework PDF assembly.

- Photographed pages are normalized with Pillow (EXIF orientation applied,
  downsampled to at most 1500 px wide, re-encoded as quality-85 JPEG).
- Each photo becomes one PDF page (PyMuPDF) sized to the photo's aspect ratio,
  bounded by A4 (595 x 842 pt), with the image drawn over the whole page.
- The photo pages are merged in front of the homework template PDF.

Every call opens and closes its own documents; nothing is shared between calls.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image, ImageOps

log = logging.getLogger(__name__)

MAX_IMAGE_WIDTH = 1500
JPEG_QUALITY = 85
A4_WIDTH = 595
A4_HEIGHT = 842

PASSTHROUGH = "passthrough"
MERGED = "merged"


# --------------------------- Errors ---------------------------

class PdfAssemblyError(Exception):
    """Base class for the homework PDF pipeline failures."""

    user_message = "Could not build the homework PDF."


class ImageProcessingError(PdfAssemblyError):
    """A photo could not be decoded, resized or re-encoded."""

    user_message = "Could not process one of the photos."

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class PdfEmbedError(PdfAssemblyError):
    """A normalized photo could not be placed on a PDF page."""

    user_message = "Could not process one of the photos."


class PdfLoadError(PdfAssemblyError):
    """A PDF buffer could not be parsed."""

    user_message = "Could not read the homework template."

    def __init__(self, message: str, label: str = "pdf"):
        super().__init__(message)
        self.label = label


# --------------------------- Data Models ---------------------------

@dataclass
class NormalizedImage:
    jpeg_bytes: bytes
    width: int
    height: int

    @property
    def ratio(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class HomeworkBuild:
    """Result of building a submission PDF.

    kind is "passthrough" when there were no photos and `pdf` is the template
    itself, or "merged" when photo pages were prepended to the template.
    """

    kind: str
    pdf: bytes
    page_count: Optional[int] = None

    @property
    def merged(self) -> bool:
        return self.kind == MERGED


# --------------------------- Images ---------------------------

def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    if img.mode == "I" or img.mode.startswith("I;16"):
        # 16-bit grey: scale to 8 bits, convert("RGB") would clip at 255
        img = img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def normalize_image(data: bytes) -> NormalizedImage:
    """Decode one photo, cap its width and re-encode it as baseline JPEG."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
        img = _flatten_to_rgb(img)

        if img.width > MAX_IMAGE_WIDTH:
            new_height = max(1, round(img.height * MAX_IMAGE_WIDTH / img.width))
            img = img.resize((MAX_IMAGE_WIDTH, new_height), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageProcessingError(f"Failed to process image: {e}") from e

    return NormalizedImage(jpeg_bytes=buffer.getvalue(), width=img.width, height=img.height)


def page_size_for(width: int, height: int) -> Tuple[float, float]:
    """Page size in points: the image's aspect ratio, bounded by A4."""
    ratio = width / height
    page_width: float = A4_WIDTH
    page_height: float = A4_HEIGHT
    if ratio > A4_WIDTH / A4_HEIGHT:
        # wider than A4: keep the width
        page_height = page_width / ratio
    else:
        page_width = page_height * ratio
    return page_width, page_height


def _add_image_page(doc: fitz.Document, image: NormalizedImage) -> None:
    page_width, page_height = page_size_for(image.width, image.height)
    page = doc.new_page(width=page_width, height=page_height)
    try:
        page.insert_image(page.rect, stream=image.jpeg_bytes, keep_proportion=False)
    except Exception as e:
        raise PdfEmbedError(f"Failed to embed image on page {doc.page_count}: {e}") from e


def convert_images_to_pdf(images: Sequence[bytes]) -> bytes:
    """Build a PDF with one full-bleed page per image, in input order.

    Callers must pass at least one image: PyMuPDF cannot save a document
    without pages, so an empty sequence raises ValueError before any work.
    """
    if not images:
        raise ValueError("convert_images_to_pdf needs at least one image")

    doc = fitz.open()
    try:
        for index, data in enumerate(images):
            try:
                normalized = normalize_image(data)
            except ImageProcessingError as e:
                raise ImageProcessingError(f"Image {index + 1}: {e}", index=index) from e
            _add_image_page(doc, normalized)
            log.debug(
                "Added photo %d (%dx%d px) as page %d",
                index, normalized.width, normalized.height, doc.page_count,
            )
        return doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()


# --------------------------- PDFs ---------------------------

def _open_pdf(data: bytes, label: str) -> fitz.Document:
    if not data:
        raise PdfLoadError(f"The {label} PDF is empty", label=label)
    try:
        doc = fitz.open(stream=data, filetype="pdf")
        is_pdf, page_count = doc.is_pdf, doc.page_count
    except Exception as e:
        raise PdfLoadError(f"Failed to load the {label} PDF: {e}", label=label) from e
    if not is_pdf:
        doc.close()
        raise PdfLoadError(f"The {label} buffer is not a PDF", label=label)
    if page_count == 0:
        doc.close()
        raise PdfLoadError(f"The {label} PDF has no pages", label=label)
    return doc


def count_pages(data: bytes) -> int:
    doc = _open_pdf(data, "input")
    try:
        return doc.page_count
    finally:
        doc.close()


def merge_pdfs(first: bytes, second: bytes) -> bytes:
    """Concatenate all pages of `first` followed by all pages of `second`.

    Pages are copied as PDF objects; nothing is re-rendered.
    """
    sources: List[fitz.Document] = []
    merged = fitz.open()
    try:
        sources.append(_open_pdf(first, "first"))
        sources.append(_open_pdf(second, "second"))
        for src in sources:
            merged.insert_pdf(src)
        log.debug(
            "Merged PDFs: %d + %d pages",
            sources[0].page_count, sources[1].page_count,
        )
        return merged.tobytes(garbage=3, deflate=True)
    finally:
        for src in sources:
            src.close()
        merged.close()


# --------------------------- Homework ---------------------------

def create_homework_pdf(
    template: bytes,
    header_text: str,
    images_pdf: Optional[bytes] = None,
) -> bytes:
    """Prepend an already built photo PDF to the homework template.

    `header_text` is accepted for callers that label submissions; it is not
    rendered.
    """
    if images_pdf is None:
        return template
    return merge_pdfs(images_pdf, template)


def build_homework_pdf(template: bytes, photos: Sequence[bytes]) -> HomeworkBuild:
    """Turn N photographed pages plus the template into one submission PDF.

    Photo pages always come first. Any failure aborts the whole build.
    """
    if not photos:
        return HomeworkBuild(kind=PASSTHROUGH, pdf=template)

    images_pdf = convert_images_to_pdf(photos)
    pdf = merge_pdfs(images_pdf, template)
    page_count = count_pages(pdf)
    log.info("Built homework PDF: %d photo(s), %d page(s) total", len(photos), page_count)
    return HomeworkBuild(kind=MERGED, pdf=pdf, page_count=page_count)
