"""
Run the service with uvicorn.

    python -m src.main
"""

import uvicorn

from .core.config import settings


def run():
    uvicorn.run(
        "src.api.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,  # loguru owns logging, see core/logging.py
    )


if __name__ == "__main__":
    run()
