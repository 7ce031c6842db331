"""uvicorn entrypoint: ``uvicorn solvency_ledger.main:app``."""
from __future__ import annotations

import os

import uvicorn

from common.logging import configure_logging

from .api import SERVICE_NAME, create_app

configure_logging(os.getenv("LOG_FORMAT", "json"), service_name=SERVICE_NAME)

app = create_app()


if __name__ == "__main__":  # pragma: no cover
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
