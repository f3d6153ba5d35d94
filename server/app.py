from __future__ import annotations

import json
import os
import uuid
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from listing_finder.config import Settings
from listing_finder.workflow import run_workflow
from telemetry.logging_utils import REQUEST_ID, get_logger

load_dotenv()

SERVICE_NAME = "listing-finder-agent"
MAX_BODY_BYTES = 2 * 1024 * 1024
INPUT_REQUIRED_ERROR = "input_as_text (string) is required"

logger = get_logger(__name__)
settings = Settings.from_env()


class WorkflowPayload(BaseModel):
    input_as_text: Optional[str] = None
    input_variables: Optional[Dict[str, Any]] = None


class BodyTooLarge(Exception):
    pass


app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    token = REQUEST_ID.set(request_id)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = "Not found" if exc.status_code == status.HTTP_404_NOT_FOUND else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": message})


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _read_body(request: Request) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise BodyTooLarge()
    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > MAX_BODY_BYTES:
            raise BodyTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


@app.get("/")
def health():
    return {"ok": True, "service": SERVICE_NAME}


@app.post("/runWorkflow")
async def run_workflow_endpoint(request: Request):
    try:
        raw = await _read_body(request)
    except BodyTooLarge:
        logger.warning("request_body_too_large", extra={"limit_bytes": MAX_BODY_BYTES})
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Request body too large")

    try:
        data = json.loads(raw or b"{}")
        payload = WorkflowPayload.model_validate(data)
    except (ValueError, ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, INPUT_REQUIRED_ERROR)

    if not payload.input_as_text or not payload.input_as_text.strip():
        return _error(status.HTTP_400_BAD_REQUEST, INPUT_REQUIRED_ERROR)

    logger.info(
        "workflow_request_start",
        extra={"input_length": len(payload.input_as_text), "variables": sorted(payload.input_variables or {})},
    )
    try:
        result = await run_workflow(payload.input_as_text, payload.input_variables, settings=settings)
    except Exception as exc:
        logger.exception("workflow_request_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server.app:app", host="0.0.0.0", port=int(os.getenv("PORT", "3000")), reload=False)
