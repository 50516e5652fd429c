"""
Tests for the ImageMagick cleanup pipeline.

Skipped when the MagickWand library isn't installed.
"""

import pytest

from src.core.errors import PreprocessingError
from src.services.preprocessor import ImagePreprocessor

wand_image = pytest.importorskip("wand.image", exc_type=ImportError)
wand_color = pytest.importorskip("wand.color", exc_type=ImportError)
wand_drawing = pytest.importorskip("wand.drawing", exc_type=ImportError)


def receipt_png(width=400, height=300):
    """White page with a grey border and a few dark text-like bars"""
    with wand_image.Image(width=width, height=height, background=wand_color.Color("gray80")) as page:
        with wand_drawing.Drawing() as draw:
            draw.fill_color = wand_color.Color("white")
            draw.rectangle(left=20, top=20, right=width - 20, bottom=height - 20)
            draw.fill_color = wand_color.Color("black")
            for row in range(4):
                top = 50 + row * 50
                draw.rectangle(left=60, top=top, right=width - 60, bottom=top + 12)
            draw(page)
        page.format = "png"
        return page.make_blob()


def size_of(blob):
    with wand_image.Image(blob=blob) as img:
        return img.size


def test_preprocess_returns_new_image_bytes():
    original = receipt_png()
    snapshot = bytes(original)

    processed = ImagePreprocessor().preprocess(original)

    assert processed
    assert processed != original
    assert original == snapshot
    width, height = size_of(processed)
    assert width > 0 and height > 0


def test_scale_down_halves_dimensions():
    source = receipt_png()

    full = size_of(ImagePreprocessor(scale_down=False).preprocess(source))
    half = size_of(ImagePreprocessor(scale_down=True).preprocess(source))

    assert half == (full[0] // 2, full[1] // 2)


def test_undecodable_image_raises():
    with pytest.raises(PreprocessingError) as exc_info:
        ImagePreprocessor().preprocess(b"this is not an image")

    assert exc_info.value.stage == "read"
    assert str(exc_info.value).startswith("failed to read image")


def test_empty_input_raises():
    with pytest.raises(PreprocessingError):
        ImagePreprocessor().preprocess(b"")


def test_stage_order_is_fixed():
    names = [name for name, _ in ImagePreprocessor(scale_down=True)._stages(object())]
    assert names == ["trim", "bilevel", "blur", "sharpen", "enhance", "contrast", "deskew", "scale"]
