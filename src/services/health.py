"""
Service health reporting.

Probes the ImageMagick and Tesseract binaries the pipeline depends on and
reports uptime, memory and the configured AI defaults.
"""

import gc
import resource
import subprocess
import sys
from datetime import UTC, datetime

from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..core.config import Settings

VERSION = "1.0.0"

# Captured once at import, read-only afterwards
STARTED_AT = datetime.now(UTC)

PROBE_TIMEOUT_SECONDS = 5


class ServiceStatus(BaseModel):
    available: bool
    version: str | None = None
    error: str | None = None


class MemoryStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    peak_resident: str
    gc_objects: int


class HealthReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    version: str
    timestamp: str
    uptime: str
    memory: MemoryStats
    tesseract: ServiceStatus
    image_magick: ServiceStatus
    ai: dict[str, str]

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


def _probe(command: list[str]) -> ServiceStatus:
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Probe {command[0]} failed: {e}")
        return ServiceStatus(available=False, error=f"{command[0]} not found or not executable")

    # Tesseract 3.x prints its version on stderr
    output = result.stdout or result.stderr
    lines = output.strip().splitlines()
    return ServiceStatus(available=True, version=lines[0].strip() if lines else "unknown")


def check_tesseract() -> ServiceStatus:
    return _probe(["tesseract", "--version"])


def check_imagemagick() -> ServiceStatus:
    # ImageMagick 7 ships "magick"; 6 only has "convert"
    status = _probe(["magick", "-version"])
    if status.available:
        return status
    status = _probe(["convert", "-version"])
    if not status.available:
        status.error = "imagemagick not found or not executable"
    return status


def memory_stats() -> MemoryStats:
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    peak_bytes = peak if sys.platform == "darwin" else peak * 1024
    return MemoryStats(
        peak_resident=f"{peak_bytes / 1024 / 1024:.2f} MB",
        gc_objects=len(gc.get_objects()),
    )


def uptime(now: datetime | None = None) -> str:
    return str((now or datetime.now(UTC)) - STARTED_AT)


def build_health_report(settings: Settings) -> HealthReport:
    tesseract = check_tesseract()
    image_magick = check_imagemagick()
    status = "healthy" if tesseract.available and image_magick.available else "degraded"

    if status != "healthy":
        logger.warning(
            "Health check degraded",
            tesseract=tesseract.available,
            imagemagick=image_magick.available,
        )

    return HealthReport(
        status=status,
        version=VERSION,
        timestamp=datetime.now(UTC).isoformat(),
        uptime=uptime(),
        memory=memory_stats(),
        tesseract=tesseract,
        image_magick=image_magick,
        ai={
            "defaultProvider": settings.ai_default_provider,
            "ocrEngine": settings.ocr_engine,
        },
    )
