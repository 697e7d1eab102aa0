import io

import pytest
from PIL import Image

import pdf_utils
from conftest import make_image, make_pdf, open_pdf
from pdf_utils import (
    HomeworkBuild,
    ImageProcessingError,
    PdfAssemblyError,
    PdfEmbedError,
    PdfLoadError,
    build_homework_pdf,
    convert_images_to_pdf,
    count_pages,
    create_homework_pdf,
    merge_pdfs,
    normalize_image,
    page_size_for,
)


def _page_sizes(data: bytes):
    doc = open_pdf(data)
    try:
        return [(page.rect.width, page.rect.height) for page in doc]
    finally:
        doc.close()


def _page_texts(data: bytes):
    doc = open_pdf(data)
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def _center_pixel(data: bytes, page_index: int):
    doc = open_pdf(data)
    try:
        pix = doc[page_index].get_pixmap()
        return pix.pixel(pix.width // 2, pix.height // 2)
    finally:
        doc.close()


# --------------------------- normalize_image ---------------------------

def test_wide_image_is_downsampled_to_max_width():
    normalized = normalize_image(make_image((2000, 1000)))

    assert (normalized.width, normalized.height) == (1500, 750)
    with Image.open(io.BytesIO(normalized.jpeg_bytes)) as img:
        assert img.format == "JPEG"
        assert img.size == (1500, 750)


@pytest.mark.parametrize("size", [(1200, 1600), (1500, 400), (10, 10)])
def test_image_within_width_is_not_resized(size):
    normalized = normalize_image(make_image(size, fmt="PNG"))

    assert (normalized.width, normalized.height) == size


def test_transparent_png_is_flattened_to_jpeg():
    normalized = normalize_image(make_image((300, 200), color=(255, 0, 0, 0), fmt="PNG"))

    assert normalized.jpeg_bytes[:2] == b"\xff\xd8"
    with Image.open(io.BytesIO(normalized.jpeg_bytes)) as img:
        assert img.mode == "RGB"
        r, g, b = img.getpixel((150, 100))
        assert min(r, g, b) > 240


def test_exif_orientation_is_applied():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotated 90 degrees
    photo = make_image((400, 200), fmt="JPEG", exif=exif)

    normalized = normalize_image(photo)

    assert (normalized.width, normalized.height) == (200, 400)


def test_sixteen_bit_grayscale_is_scaled_not_clipped():
    buffer = io.BytesIO()
    Image.new("I;16", (20, 30), 40000).save(buffer, format="PNG")

    normalized = normalize_image(buffer.getvalue())

    with Image.open(io.BytesIO(normalized.jpeg_bytes)) as img:
        r, g, b = img.getpixel((10, 15))
    assert 140 < r < 170
    assert abs(r - g) <= 2 and abs(g - b) <= 2


@pytest.mark.parametrize("data", [b"", b"not an image", make_pdf(["x"])])
def test_undecodable_input_raises_image_processing_error(data):
    with pytest.raises(ImageProcessingError):
        normalize_image(data)


def test_truncated_image_raises_image_processing_error():
    photo = make_image((800, 800))

    with pytest.raises(ImageProcessingError):
        normalize_image(photo[: len(photo) // 3])


# --------------------------- page sizing ---------------------------

@pytest.mark.parametrize(
    "size, expected",
    [
        ((2000, 1000), (595, 297.5)),
        ((1200, 1600), (595, 793.333333)),
        ((800, 800), (595, 595)),
        ((595, 842), (595, 842)),
        ((100, 1000), (84.2, 842)),
    ],
)
def test_page_size_follows_a4_rule(size, expected):
    width, height = page_size_for(*size)

    assert width == pytest.approx(expected[0], abs=1e-5)
    assert height == pytest.approx(expected[1], abs=1e-5)


# --------------------------- convert_images_to_pdf ---------------------------

def test_one_page_per_image():
    photos = [make_image((400, 600)), make_image((600, 400)), make_image((500, 500))]

    pdf = convert_images_to_pdf(photos)

    assert count_pages(pdf) == 3


def test_page_order_matches_input_order():
    pdf = convert_images_to_pdf([make_image((300, 400), "red"), make_image((300, 400), "blue")])

    r, g, b = _center_pixel(pdf, 0)
    assert r > 200 and b < 60
    r, g, b = _center_pixel(pdf, 1)
    assert b > 200 and r < 60


@pytest.mark.parametrize("size", [(2000, 1000), (1200, 1600), (3000, 4000), (640, 480)])
def test_page_aspect_ratio_matches_image(size):
    pdf = convert_images_to_pdf([make_image(size)])

    (width, height), = _page_sizes(pdf)
    assert width / height == pytest.approx(size[0] / size[1], abs=1e-3)
    assert width <= 595 + 1e-3 and height <= 842 + 1e-3
    assert width == pytest.approx(595, abs=1e-3) or height == pytest.approx(842, abs=1e-3)


def test_wide_photo_page_size():
    pdf = convert_images_to_pdf([make_image((2000, 1000))])

    (width, height), = _page_sizes(pdf)
    assert width == pytest.approx(595, abs=1e-3)
    assert height == pytest.approx(297.5, abs=1e-3)


def test_tall_photo_page_size():
    pdf = convert_images_to_pdf([make_image((1000, 2000), fmt="PNG")])

    (width, height), = _page_sizes(pdf)
    assert width == pytest.approx(421, abs=1e-3)
    assert height == pytest.approx(842, abs=1e-3)


def test_three_by_four_photo_is_pinned_to_a4_width():
    # 3:4 is wider than A4 (595:842), so the width is kept
    pdf = convert_images_to_pdf([make_image((1200, 1600), fmt="PNG")])

    (width, height), = _page_sizes(pdf)
    assert width == pytest.approx(595, abs=1e-3)
    assert height == pytest.approx(793.333, abs=1e-3)


def test_bad_image_reports_its_index():
    photos = [make_image(), b"garbage", make_image()]

    with pytest.raises(ImageProcessingError) as excinfo:
        convert_images_to_pdf(photos)

    assert excinfo.value.index == 1


def test_bad_image_is_left_to_the_caller_to_log(caplog):
    with caplog.at_level("DEBUG", logger="pdf_utils"):
        with pytest.raises(ImageProcessingError):
            convert_images_to_pdf([b"garbage"])

    assert [r for r in caplog.records if r.levelname == "ERROR"] == []


def test_embed_failure_raises_pdf_embed_error(monkeypatch):
    def broken_normalize(data):
        return pdf_utils.NormalizedImage(jpeg_bytes=b"no image data here", width=100, height=100)

    monkeypatch.setattr(pdf_utils, "normalize_image", broken_normalize)

    with pytest.raises(PdfEmbedError):
        convert_images_to_pdf([b"anything"])


def test_convert_requires_images():
    with pytest.raises(ValueError):
        convert_images_to_pdf([])


# --------------------------- merge_pdfs ---------------------------

def test_merge_keeps_page_order():
    first = make_pdf(["A1", "A2"])
    second = make_pdf(["B1", "B2", "B3"])

    merged = merge_pdfs(first, second)

    texts = [t.strip() for t in _page_texts(merged)]
    assert texts == ["A1", "A2", "B1", "B2", "B3"]


def test_merge_preserves_page_sizes():
    photos_pdf = convert_images_to_pdf([make_image((2000, 1000))])

    merged = merge_pdfs(photos_pdf, make_pdf(["T"]))

    sizes = _page_sizes(merged)
    assert sizes[0] == pytest.approx((595, 297.5), abs=1e-3)
    assert sizes[1] == pytest.approx((595, 842), abs=1e-3)


@pytest.mark.parametrize(
    "first, second, label",
    [
        (b"%PDF-garbage", None, "first"),
        (None, b"", "second"),
        (None, make_image(), "second"),
    ],
)
def test_merge_rejects_non_pdf_input(first, second, label):
    good = make_pdf(["ok"])

    with pytest.raises(PdfLoadError) as excinfo:
        merge_pdfs(first if first is not None else good, second if second is not None else good)

    assert excinfo.value.label == label


def test_count_pages_rejects_garbage():
    with pytest.raises(PdfLoadError):
        count_pages(b"definitely not a pdf")


# --------------------------- homework ---------------------------

def test_create_homework_pdf_without_images_returns_template(template_pdf):
    assert create_homework_pdf(template_pdf, "Homework 3") is template_pdf


def test_create_homework_pdf_puts_images_first(template_pdf):
    images_pdf = make_pdf(["PHOTO"])

    result = create_homework_pdf(template_pdf, "Homework 3", images_pdf)

    texts = [t.strip() for t in _page_texts(result)]
    assert texts == ["PHOTO", "TEMPLATE PAGE 1", "TEMPLATE PAGE 2"]


def test_build_without_photos_is_passthrough(template_pdf):
    build = build_homework_pdf(template_pdf, [])

    assert build == HomeworkBuild(kind="passthrough", pdf=template_pdf)
    assert build.pdf == template_pdf
    assert not build.merged


def test_build_passthrough_does_not_parse_template():
    not_a_pdf = b"anything at all"

    assert build_homework_pdf(not_a_pdf, []).pdf is not_a_pdf


def test_build_puts_photos_before_template(template_pdf):
    photos = [make_image((1000, 2000), "red"), make_image((2000, 1000), "blue")]

    build = build_homework_pdf(template_pdf, photos)

    assert build.kind == "merged"
    assert build.page_count == 4
    texts = [t.strip() for t in _page_texts(build.pdf)]
    assert texts == ["", "", "TEMPLATE PAGE 1", "TEMPLATE PAGE 2"]
    assert _center_pixel(build.pdf, 0)[0] > 200
    assert _center_pixel(build.pdf, 1)[2] > 200


def test_build_with_one_wide_photo():
    build = build_homework_pdf(make_pdf(["T"]), [make_image((2000, 1000))])

    sizes = _page_sizes(build.pdf)
    assert len(sizes) == 2
    assert sizes[0] == pytest.approx((595, 297.5), abs=1e-3)
    assert _page_texts(build.pdf)[1].strip() == "T"


def test_build_fails_closed_on_bad_photo(template_pdf):
    with pytest.raises(ImageProcessingError):
        build_homework_pdf(template_pdf, [make_image(), b"not a photo"])


def test_build_fails_closed_on_bad_template():
    with pytest.raises(PdfLoadError) as excinfo:
        build_homework_pdf(b"not a pdf", [make_image()])

    assert excinfo.value.label == "second"


def test_errors_share_a_base_class():
    for cls in (ImageProcessingError, PdfEmbedError, PdfLoadError):
        assert issubclass(cls, PdfAssemblyError)
        assert cls.user_message
