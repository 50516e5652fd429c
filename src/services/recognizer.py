"""
Tesseract OCR for preprocessed invoice images.

Requirements:
    - Tesseract OCR installed on the system (with the language packs in use)
    - pytesseract Python package
"""

import io
import shlex
import time
from dataclasses import dataclass, field

import pytesseract
from loguru import logger
from packaging.version import Version
from PIL import Image, UnidentifiedImageError

from ..core.config import DEFAULT_CHAR_BLACKLIST
from ..core.errors import RecognitionError

DEFAULT_LANGUAGE = "eng"
DEFAULT_OCR_CONFIDENCE = 0.8

# Older LSTM engines ignore tessedit_char_blacklist
MIN_BLACKLIST_VERSION = Version("4.1")


@dataclass(frozen=True)
class OCRResult:
    text: str
    confidence: float
    duration: float  # seconds


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class WordInfo:
    text: str
    confidence: float  # 0-1
    box: BoundingBox = field(default_factory=lambda: BoundingBox(0, 0, 0, 0))


class TextRecognizer:
    """
    Extracts plain text from an image buffer.

    The engine confidence computed here is informational. It is not the
    confidence reported on the extracted invoice record.
    """

    def __init__(
        self,
        language: str | None = None,
        char_blacklist: str = DEFAULT_CHAR_BLACKLIST,
        extra_config: str = "",
    ):
        self.language = language or DEFAULT_LANGUAGE
        self.char_blacklist = char_blacklist
        self.extra_config = extra_config

    def _blacklist_option(self) -> str | None:
        """Tesseract option suppressing symbols rarely valid on invoices, or None if it can't be applied."""
        if not self.char_blacklist:
            return None

        try:
            version = Version(str(pytesseract.get_tesseract_version()).split()[0])
        except (pytesseract.TesseractNotFoundError, EnvironmentError, ValueError) as e:
            logger.warning(f"Character blacklist not applied, engine version unknown: {e}")
            return None

        if version < MIN_BLACKLIST_VERSION:
            logger.warning(
                "Character blacklist not applied, engine too old",
                version=str(version),
            )
            return None

        return "-c " + shlex.quote(f"tessedit_char_blacklist={self.char_blacklist}")

    def _build_config(self, blacklist: str | None) -> str:
        return " ".join(part for part in (self.extra_config, blacklist) if part)

    @staticmethod
    def _open(image_bytes: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise RecognitionError(f"failed to set image: {e}") from e
        return image

    def _mean_confidence(self, image: Image.Image, config: str) -> float | None:
        """Mean word confidence rescaled to 0-1, or None when the engine doesn't report one."""
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as e:
            logger.warning(f"Could not compute OCR confidence: {e}")
            return None

        scores = []
        for raw in data.get("conf", []):
            try:
                score = float(raw)
            except (TypeError, ValueError):
                continue
            if score >= 0:
                scores.append(score)

        if not scores:
            return None
        return sum(scores) / len(scores) / 100.0

    def recognize(self, image_bytes: bytes) -> OCRResult:
        """
        Run OCR on ``image_bytes``.

        Raises:
            RecognitionError: If the image can't be decoded or the engine fails.
        """
        start_time = time.perf_counter()
        image = self._open(image_bytes)
        config = self._build_config(self._blacklist_option())

        try:
            text = pytesseract.image_to_string(image, lang=self.language, config=config)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise RecognitionError(f"OCR extraction failed: {e}") from e

        duration = time.perf_counter() - start_time

        confidence = self._mean_confidence(image, config)
        if confidence is None:
            confidence = DEFAULT_OCR_CONFIDENCE

        logger.info(
            "OCR completed",
            language=self.language,
            characters=len(text),
            engine_confidence=round(confidence, 3),
            duration=round(duration, 3),
        )
        return OCRResult(text=text, confidence=confidence, duration=duration)

    def recognize_words(self, image_bytes: bytes) -> tuple[str, list[WordInfo]]:
        """
        Return the recognized text plus word-level boxes.

        Boxes are best effort: if the engine can't produce them the text is
        still returned with an empty word list.
        """
        image = self._open(image_bytes)
        config = self._build_config(None)

        try:
            text = pytesseract.image_to_string(image, lang=self.language, config=config)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise RecognitionError(f"OCR extraction failed: {e}") from e

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as e:
            logger.warning(f"Word boxes unavailable: {e}")
            return text, []

        words = []
        for i, word in enumerate(data.get("text", [])):
            if not word or not word.strip():
                continue
            try:
                confidence = float(data["conf"][i])
            except (KeyError, IndexError, TypeError, ValueError):
                confidence = -1.0
            words.append(
                WordInfo(
                    text=word,
                    confidence=max(confidence, 0.0) / 100.0,
                    box=BoundingBox(
                        x=int(data["left"][i]),
                        y=int(data["top"][i]),
                        width=int(data["width"][i]),
                        height=int(data["height"][i]),
                    ),
                )
            )
        return text, words
