# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""FastAPI server for the DealFlow capital-call engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv


# Load .env first so DEALFLOW_DB_PATH and CAPITAL_CALL_* overrides are visible to load_config
def _load_env() -> None:
    # 1) Repo root .env, primary; override so file wins over empty shell vars
    _repo_root = Path(__file__).resolve().parent.parent.parent
    _env_file = _repo_root / ".env"
    if _env_file.exists():
        load_dotenv(_env_file, override=True)
    # 2) Current working directory .env
    load_dotenv()


_load_env()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dealflow import __version__
from dealflow.api.capital_call_routes import router as capital_call_router
from dealflow.core.errors import (
    DealFlowError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    PaymentRejectedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First match wins; subclasses inherit their parent's status.
ERROR_STATUS = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (PaymentRejectedError, 409),
    (InternalError, 500),
)


def status_for(error: DealFlowError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 500


app = FastAPI(title="DealFlow API", version=__version__)


@app.exception_handler(DealFlowError)
async def dealflow_error_handler(request: Request, exc: DealFlowError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
        detail: Dict[str, Any] = {"error": exc.code, "message": "Internal error; the request was not applied"}
    else:
        logger.info("[API] %s %s -> %d %s", request.method, request.url.path, status, exc.code)
        detail = exc.to_dict()
    return JSONResponse(status_code=status, content={"detail": detail})


app.include_router(capital_call_router)


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}
