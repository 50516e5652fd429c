from fastapi import Depends

from ..core.config import Settings, get_settings
from ..services.pipeline import InvoicePipeline


def get_pipeline(settings: Settings = Depends(get_settings)) -> InvoicePipeline:
    """A fresh pipeline per request; nothing carries over between uploads."""
    return InvoicePipeline(settings)
