"""
Per-request invoice processing.

    provider selected -> image preprocessed -> OCR (or image encoded for a
    vision model) -> AI extraction -> ProcessResponse

Nothing is shared between requests. Blocking image and OCR work runs in a
worker thread so the event loop keeps serving other uploads.
"""

import asyncio
import base64
import time
from typing import Callable

from loguru import logger

from .extractor import InvoiceExtractor
from .preprocessor import ImagePreprocessor
from .providers import AIProvider, create_provider
from .recognizer import TextRecognizer
from ..core.config import Settings
from ..core.errors import InvoiceServiceError, PreprocessingError, RecognitionError
from ..models.invoice import InvoiceRecord, ProcessingRequest, ProcessResponse

VISION_DATA_URI_PREFIX = "data:image/jpeg;base64,"


class InvoicePipeline:
    """
    Runs one upload through the full pipeline.

    The collaborators are injectable so tests can swap in spies:

        pipeline = InvoicePipeline(settings, preprocessor=spy)
    """

    def __init__(
        self,
        settings: Settings,
        preprocessor: ImagePreprocessor | None = None,
        recognizer_factory: Callable[[str], TextRecognizer] | None = None,
        provider_factory: Callable[[str, str | None, Settings], AIProvider] = create_provider,
    ):
        self.settings = settings
        self.preprocessor = preprocessor or ImagePreprocessor(scale_down=settings.scale_down_images)
        self.recognizer_factory = recognizer_factory or self._default_recognizer
        self.provider_factory = provider_factory

    def _default_recognizer(self, language: str) -> TextRecognizer:
        return TextRecognizer(
            language=language,
            char_blacklist=self.settings.ocr_char_blacklist,
            extra_config=self.settings.ocr_tesseract_config,
        )

    async def process(self, request: ProcessingRequest) -> ProcessResponse:
        """
        Process an upload and wrap the outcome in a ProcessResponse.

        Failures never escape: they become ``success=False`` with a message
        naming the stage that failed.
        """
        start_time = time.perf_counter()
        timeout = self.settings.processing_timeout_seconds

        try:
            if timeout:
                invoice, ocr_duration, ai_duration = await asyncio.wait_for(self._run(request), timeout)
            else:
                invoice, ocr_duration, ai_duration = await self._run(request)
        except InvoiceServiceError as e:
            total = time.perf_counter() - start_time
            logger.error(
                "Invoice processing failed",
                error_type=type(e).__name__,
                provider=request.ai_provider,
                duration=round(total, 3),
            )
            return ProcessResponse(success=False, error=str(e), total_duration=total)
        except TimeoutError:
            total = time.perf_counter() - start_time
            logger.error("Invoice processing timed out", timeout=timeout, provider=request.ai_provider)
            return ProcessResponse(
                success=False,
                error=f"processing timed out after {timeout:g}s",
                total_duration=total,
            )

        total = time.perf_counter() - start_time
        logger.info(
            "Invoice processed",
            vendor=invoice.vendor,
            items=len(invoice.items),
            ocr_duration=round(ocr_duration, 3),
            ai_duration=round(ai_duration, 3),
            total_duration=round(total, 3),
        )
        return ProcessResponse(
            success=True,
            invoice=invoice,
            ocr_duration=ocr_duration,
            ai_duration=ai_duration,
            total_duration=total,
        )

    async def _run(self, request: ProcessingRequest) -> tuple[InvoiceRecord, float, float]:
        # Provider first: an unknown name must fail before any image work
        provider = self.provider_factory(request.ai_provider, request.model, self.settings)
        logger.info(
            "Processing invoice",
            provider=provider.name,
            model=provider.model,
            vision=request.use_vision_model,
            size_bytes=len(request.image_data),
        )

        try:
            processed = await asyncio.to_thread(self.preprocessor.preprocess, request.image_data)
        except PreprocessingError as e:
            raise PreprocessingError(f"image preprocessing failed: {e}", stage=e.stage) from e

        ocr_text = ""
        ocr_duration = 0.0
        image_data_uri = None

        if request.use_vision_model:
            image_data_uri = VISION_DATA_URI_PREFIX + base64.b64encode(processed).decode("ascii")
        else:
            language = request.language or self.settings.ocr_language
            recognizer = self.recognizer_factory(language)
            try:
                result = await asyncio.to_thread(recognizer.recognize, processed)
            except RecognitionError as e:
                raise RecognitionError(f"OCR failed: {e}") from e
            ocr_text = result.text
            ocr_duration = result.duration

        extractor = InvoiceExtractor(provider, self.settings.categories)
        invoice, ai_duration = await extractor.extract(ocr_text, image_data_uri)
        return invoice, ocr_duration, ai_duration
