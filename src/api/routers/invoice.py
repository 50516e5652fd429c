import time

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse
from loguru import logger

from ..deps import get_pipeline
from ...core.config import Settings, get_settings
from ...core.errors import UploadError
from ...models.invoice import ProcessingRequest, ProcessResponse
from ...services.pipeline import InvoicePipeline

router = APIRouter(prefix="/api", tags=["invoices"])


def upload_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message},
    )


async def read_upload(file: UploadFile | None, max_size: int) -> bytes:
    """
    Read the uploaded image, enforcing the size limit.

    Raises:
        UploadError: If no file was sent or it exceeds ``max_size`` bytes.
    """
    if file is None:
        raise UploadError("No file provided")

    if file.size is not None and file.size > max_size:
        raise UploadError("File too large or invalid form data")

    # Read one byte past the limit so oversize bodies are caught without trusting file.size
    content = await file.read(max_size + 1)
    if len(content) > max_size:
        raise UploadError("File too large or invalid form data")
    if not content:
        raise UploadError("No file provided")
    return content


@router.post("/process-invoice", response_model=ProcessResponse, response_model_exclude_none=True)
async def process_invoice(
    file: UploadFile | None = File(None),
    ai_provider: str | None = Form(None, alias="aiProvider"),
    model: str | None = Form(None),
    use_vision_model: str | None = Form(None, alias="useVisionModel"),
    language: str | None = Form(None),
    settings: Settings = Depends(get_settings),
    pipeline: InvoicePipeline = Depends(get_pipeline),
):
    """
    Extract structured invoice data from an uploaded receipt/invoice image.

    Multipart fields:
    - file: image bytes (required, at most MAX_UPLOAD_SIZE)
    - aiProvider: openai | gemini | ollama (default AI_DEFAULT_PROVIDER)
    - model: model override for the chosen provider
    - useVisionModel: "true" sends the image straight to the model, skipping OCR
    - language: OCR language code (default OCR_LANGUAGE)

    Processing failures still return 200 with ``success: false``; only a
    missing, malformed or oversized upload returns 400.
    """
    start_time = time.perf_counter()
    try:
        image_data = await read_upload(file, settings.max_upload_size)
    except UploadError as e:
        logger.warning("Upload rejected", reason=str(e), max_size=settings.max_upload_size)
        return upload_error(str(e))

    request = ProcessingRequest(
        image_data=image_data,
        use_vision_model=use_vision_model == "true",
        ai_provider=ai_provider or settings.ai_default_provider,
        model=model or None,
        language=language or settings.ocr_language,
    )

    logger.info(
        "Invoice upload received",
        filename=file.filename,
        size_bytes=len(image_data),
        provider=request.ai_provider,
        vision=request.use_vision_model,
    )

    try:
        return await pipeline.process(request)
    except Exception as e:
        logger.exception("Unexpected error while processing invoice")
        return ProcessResponse(
            success=False,
            error=f"internal error: {e}",
            total_duration=time.perf_counter() - start_time,
        )
