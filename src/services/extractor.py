import json
import re
import time
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation

from loguru import logger

from .providers import AIProvider
from ..core.errors import ExtractionError, ProviderError
from ..models.invoice import DEFAULT_CONFIDENCE, InvoiceRecord, LineItem

PROMPT_TEMPLATE = """Extract invoice/receipt data from the following text and return ONLY valid JSON.

Available categories: {categories}

Return JSON with this EXACT structure (no markdown, no code blocks):
{{
  "vendor": "merchant/store name",
  "date": "YYYY-MM-DD",
  "total": 123.45,
  "tax": 12.34,
  "items": [
    {{
      "name": "item name",
      "amount": 10.50,
      "isTaxed": true,
      "quantity": 1
    }}
  ],
  "categories": ["category1", "category2"]
}}

Rules:
- Use 'Unknown Vendor' if store name cannot be found
- Omit fields if not found with confidence
- Assume year is {year} if not specified
- Total and amounts must be numbers (not strings)
- Select up to 2 categories from the provided list
- Extract individual items if visible in the receipt

Receipt text:
{text}"""

_FENCE = re.compile(r"```(?:json)?")

# strptime alone accepts "2024-3-1"; fields must be zero padded
_DATE_LAYOUTS = (
    (re.compile(r"\d{4}-\d{2}-\d{2}"), "%Y-%m-%d"),
    (re.compile(r"\d{2}/\d{2}/\d{4}"), "%d/%m/%Y"),
)


def clean_response(raw_text: str) -> str:
    """Remove Markdown code fences some models add even when told not to."""
    return _FENCE.sub("", raw_text.strip()).strip()


def parse_decimal(value) -> Decimal | None:
    """Decimal from a JSON number or numeric string; None if it isn't one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _money(value) -> Decimal:
    amount = parse_decimal(value)
    return amount if amount is not None else Decimal("0")


def parse_date(value) -> date | None:
    """
    Parse an invoice date, trying YYYY-MM-DD, then DD/MM/YYYY, then RFC3339.

    Returns None when nothing matches; a bad date never fails extraction.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()

    for shape, layout in _DATE_LAYOUTS:
        if not shape.fullmatch(value):
            continue
        try:
            return datetime.strptime(value, layout).date()
        except ValueError:
            pass

    # RFC3339 requires a time and an offset
    if "T" in value.upper() and (value.endswith(("Z", "z")) or re.search(r"[+-]\d{2}:\d{2}$", value)):
        try:
            return datetime.fromisoformat(value.replace("z", "Z")).date()
        except ValueError:
            pass
    return None


def _parse_quantity(value) -> int:
    if isinstance(value, bool) or value is None:
        return 1
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, Decimal) and value == value.to_integral_value():
        value = int(value)
    if not isinstance(value, int) or value < 0:
        return 1
    return value


class InvoiceExtractor:
    """
    Turns OCR text (or an image, on the vision path) into an InvoiceRecord.

    Builds the extraction prompt, calls the AI provider and parses its JSON
    answer. Money is parsed as Decimal so totals never drift.
    """

    def __init__(self, provider: AIProvider, categories: list[str]):
        self.provider = provider
        self.categories = list(categories)

    def build_prompt(self, ocr_text: str) -> str:
        return PROMPT_TEMPLATE.format(
            categories=", ".join(self.categories),
            year=datetime.now().year,
            text=ocr_text,
        )

    async def extract(self, ocr_text: str, image_data_uri: str | None = None) -> tuple[InvoiceRecord, float]:
        """
        Extract structured invoice data.

        Returns:
            (record, seconds spent waiting on the provider)

        Raises:
            ExtractionError: If the provider fails or answers with invalid JSON.
        """
        start_time = time.perf_counter()
        prompt = self.build_prompt(ocr_text)

        try:
            response = await self.provider.extract(prompt, image_data_uri)
        except ProviderError as e:
            raise ExtractionError(f"AI extraction failed: {e}") from e

        duration = time.perf_counter() - start_time
        logger.info(
            "AI provider answered",
            provider=self.provider.name,
            model=self.provider.model,
            characters=len(response),
            duration=round(duration, 3),
        )

        record = self.parse_response(response, ocr_text)
        return record, duration

    def parse_response(self, response: str, ocr_text: str) -> InvoiceRecord:
        cleaned = clean_response(response)

        try:
            raw = json.loads(cleaned, parse_float=Decimal)
        except json.JSONDecodeError as e:
            logger.error("AI response is not valid JSON", provider=self.provider.name)
            raise ExtractionError(
                f"failed to parse AI response: JSON parse error: {e}\nResponse: {cleaned}",
                raw_text=cleaned,
            ) from e

        if not isinstance(raw, dict):
            raise ExtractionError(
                f"failed to parse AI response: expected a JSON object, got {type(raw).__name__}\nResponse: {cleaned}",
                raw_text=cleaned,
            )

        for field in ("items", "categories"):
            value = raw.get(field)
            if value is not None and not isinstance(value, list):
                logger.error("AI response has the wrong shape", provider=self.provider.name, field=field)
                raise ExtractionError(
                    f"failed to parse AI response: JSON parse error: {field!r} must be an array, "
                    f"got {type(value).__name__}\nResponse: {cleaned}",
                    raw_text=cleaned,
                )

        items = []
        for item in raw.get("items") or []:
            if not isinstance(item, dict):
                continue
            items.append(
                LineItem(
                    name=str(item.get("name") or ""),
                    amount=_money(item.get("amount")),
                    is_taxed=item.get("isTaxed") is True,
                    quantity=_parse_quantity(item.get("quantity")),
                )
            )

        categories = raw.get("categories") or []

        invoice_date = parse_date(raw.get("date"))
        if raw.get("date") and invoice_date is None:
            logger.warning("Ignoring unparseable invoice date", date=str(raw.get("date")))

        return InvoiceRecord(
            vendor=str(raw.get("vendor") or ""),
            date=invoice_date,
            total=_money(raw.get("total")),
            tax=_money(raw.get("tax")),
            items=items,
            categories=[str(c) for c in categories],
            raw_text=ocr_text,
            confidence=DEFAULT_CONFIDENCE,
            processed_at=datetime.now(UTC),
        )
