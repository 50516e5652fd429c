from dataclasses import dataclass
import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_CONFIDENCE = 0.85


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class LineItem(_CamelModel):
    name: str = ""
    amount: Decimal = Decimal("0")
    is_taxed: bool = False
    quantity: int = Field(default=1, ge=0)


class InvoiceRecord(_CamelModel):
    """Structured invoice data built from one AI answer. Never mutated after construction."""

    vendor: str = ""
    date: dt.date | None = None
    total: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    items: list[LineItem] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    raw_text: str = ""  # Full OCR text; empty on the vision path
    confidence: float = Field(default=DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    processed_at: dt.datetime


class ProcessResponse(_CamelModel):
    success: bool
    invoice: InvoiceRecord | None = None
    error: str | None = None

    # Processing metadata, seconds
    ocr_duration: float | None = None
    ai_duration: float | None = None
    total_duration: float = 0.0


@dataclass(frozen=True)
class ProcessingRequest:
    """Inputs of a single /api/process-invoice call."""

    image_data: bytes
    use_vision_model: bool = False
    ai_provider: str = ""
    model: str | None = None
    language: str | None = None
