"""
FastAPI service: natural-language analytics over placement offers.

Endpoints:
- ``POST /ai/query``  : UniversalPlan pipeline (count / list / aggregate / chart)
- ``POST /ai/chat``   : intent-based planner
- ``GET  /ai/catalog``: canonical field catalog the planner works with
- ``GET  /health``, ``GET /llm-status``
"""

from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from catalog import COLLECTION, FIELDS, TIMEZONE
from config import CORS_ORIGINS, GEMINI_MODEL
from db_executor import open_store
from errors import InvalidRequest, QueryError
from llm_planner import GeminiOracle
from logger import logger
from query_orchestrator import run_ai_chat, run_ai_query

VERSION = "1.0.0"

app = FastAPI(title="Placement Analytics Service", version=VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------- REQUEST MODELS ----------------------


class QueryRequest(BaseModel):
    # validated by run_ai_query / run_ai_chat
    message: Any = None
    debug: bool = False


class ChatRequest(BaseModel):
    message: Any = None


# ---------------------- DEPENDENCIES ----------------------

_oracle: Optional[GeminiOracle] = None


def get_oracle() -> GeminiOracle:
    global _oracle
    if _oracle is None:
        _oracle = GeminiOracle()
    return _oracle


def get_store():
    with open_store() as store:
        yield store


# ---------------------- ERROR HANDLING ----------------------


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.errors())
    error = InvalidRequest("invalid request body")
    return JSONResponse(status_code=error.status_code, content=error.to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})


# ---------------------- ENDPOINTS ----------------------


@app.post("/ai/query")
def ai_query(
    request: Optional[QueryRequest] = None,
    oracle=Depends(get_oracle),
    store=Depends(get_store),
):
    request = request or QueryRequest()
    return run_ai_query(request.message, oracle, store, debug=request.debug)


@app.post("/ai/chat")
def ai_chat(
    request: Optional[ChatRequest] = None,
    oracle=Depends(get_oracle),
    store=Depends(get_store),
):
    request = request or ChatRequest()
    return run_ai_chat(request.message, oracle, store)


@app.get("/ai/catalog")
def ai_catalog():
    return {"collection": COLLECTION, "timezone": TIMEZONE, "fields": FIELDS}


@app.get("/health")
def health_check():
    return {"status": "ok", "version": VERSION}


@app.get("/llm-status")
def llm_status(oracle=Depends(get_oracle)):
    """Check whether the plan oracle is configured."""
    configured = oracle.configured
    return {
        "llm_configured": configured,
        "model": GEMINI_MODEL,
        "info": (
            "Plan oracle active"
            if configured
            else "Plan oracle inactive. Set GEMINI_API_KEY to enable /ai/query and /ai/chat."
        ),
    }
