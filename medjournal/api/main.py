import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from medjournal.audit.verification import verify_entry_hash
from medjournal.classifier.gateway import ClassifierGateway
from medjournal.config import Settings, load_settings
from medjournal.errors import (
    ClassifierError,
    ConfigurationError,
    EmptyResponse,
    InvalidInput,
    StoreError,
    StoreUnavailable,
    UnparsableResponse,
    UpstreamError,
)
from medjournal.export.text_export import export_entries_text, export_filename
from medjournal.storage import build_entry_store
from medjournal.telemetry import emit_exception_telemetry, init_telemetry

# --- 1. SETUP AUDIT LOGGING ---
logging.basicConfig(
    filename="audit.log",
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
audit_logger = logging.getLogger("audit")

# --- 2. TELEMETRY AT STARTUP ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_telemetry(get_settings().appinsights_connection_string)
    except ConfigurationError as e:
        audit_logger.error(f"CONFIG_ERROR: {e}")
    yield


# --- 3. Swagger UI Metadata ---
tags_metadata = [
    {
        "name": "Analysis",
        "description": "Extracts structured health signals from a journal entry.",
    },
    {
        "name": "Entries",
        "description": "Owner-scoped, newest-first access to verified entries.",
    },
    {
        "name": "System",
        "description": "Health checks and operational metadata.",
    },
]

app = FastAPI(
    title="MedJournal Verification Service",
    description="""
    **Health journal with tamper evidence.**

    * **Analysis:** free text in, validated symptoms / mood / severity out.
    * **Entries:** append-only records bound to a signed content hash.
    * **Verification:** recompute a stored entry's content hash on demand.
    """,
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


@lru_cache
def get_settings() -> Settings:
    return load_settings()


@lru_cache
def get_classifier() -> ClassifierGateway:
    return ClassifierGateway.from_settings(get_settings())


@lru_cache
def get_store():
    return build_entry_store(get_settings())


# --- 4. MIDDLEWARE: AUDIT TRAIL ---
@app.middleware("http")
async def audit_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    client_host = request.client.host if request.client else "unknown"
    audit_logger.info(
        f"METHOD={request.method} PATH={request.url.path} "
        f"STATUS={response.status_code} CLIENT={client_host} "
        f"DURATION={process_time:.4f}s"
    )
    return response


# --- DATA MODELS ---
class AnalysisModel(BaseModel):
    symptoms: List[str]
    mood: str
    severity: str
    summary: str
    confidence: float


class AnalyzeResponse(BaseModel):
    analysis: AnalysisModel


class EntryModel(BaseModel):
    id: str
    wallet_address: str
    entry_text: str
    symptoms: List[str]
    mood: str
    severity: str
    summary: str
    confidence_score: Optional[float] = None
    data_hash: str
    tx_hash: str
    block_number: Optional[int] = None
    submitted_at: str
    created_at: str


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def classifier_error_response(e: ClassifierError) -> JSONResponse:
    if isinstance(e, InvalidInput):
        return error_response(400, "Invalid request: 'text' is required")
    if isinstance(e, UpstreamError):
        return error_response(502, "Classifier request failed", e.body or None)
    if isinstance(e, EmptyResponse):
        return error_response(502, "No content returned from classifier")
    if isinstance(e, UnparsableResponse):
        return error_response(500, "Failed to parse AI output")
    return error_response(500, "Internal error", type(e).__name__)


def store_error_response(e: StoreError) -> JSONResponse:
    if isinstance(e, StoreUnavailable):
        return error_response(503, "Entry store unavailable")
    return error_response(500, "Entry store rejected the request")


# --- ENDPOINTS ---

async def read_entry_text(request: Request) -> Any:
    """
    Lenient body read: an unparseable body counts as empty text, and a
    non-string `text` is passed through for the classifier to reject.
    """
    try:
        payload = await request.json()
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    return payload.get("text", "")


@app.post("/analyze-entry", response_model=AnalyzeResponse, tags=["Analysis"])
def analyze_entry(text: Any = Depends(read_entry_text)):
    """
    Classify one journal entry. Nothing is stored.
    """
    try:
        classifier = get_classifier()
        result = classifier.classify(text)
    except ConfigurationError as e:
        audit_logger.error(f"CONFIG_ERROR: {e}")
        return error_response(500, str(e))
    except ClassifierError as e:
        audit_logger.error(f"CLASSIFIER_ERROR: {type(e).__name__}")
        emit_exception_telemetry(e)
        return classifier_error_response(e)
    except Exception as e:
        audit_logger.error(f"ENGINE_ERROR: {type(e).__name__}")
        emit_exception_telemetry(e)
        return error_response(500, "Internal error", type(e).__name__)

    return {"analysis": result.to_dict()}


@app.get("/entries", response_model=List[EntryModel], tags=["Entries"])
def list_entries(wallet_address: str = Query(..., min_length=1), store=Depends(get_store)):
    """List an owner's entries, newest first."""
    try:
        entries = store.list_by_owner(wallet_address)
    except StoreError as e:
        audit_logger.error(f"STORE_ERROR: {type(e).__name__}")
        return store_error_response(e)
    return [entry.to_record() for entry in entries]


@app.get("/entries/export", response_class=PlainTextResponse, tags=["Entries"])
def export_entries(wallet_address: str = Query(..., min_length=1), store=Depends(get_store)):
    """Plain-text export of an owner's entries, newest first."""
    try:
        entries = store.list_by_owner(wallet_address)
    except StoreError as e:
        audit_logger.error(f"STORE_ERROR: {type(e).__name__}")
        return store_error_response(e)

    filename = export_filename(datetime.now(timezone.utc))
    return PlainTextResponse(
        export_entries_text(entries),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/entries/{entry_id}/verification", tags=["Entries"])
def verify_entry(entry_id: str, store=Depends(get_store)):
    """Recompute a stored entry's content hash and compare."""
    try:
        entry = store.get(entry_id)
    except StoreError as e:
        audit_logger.error(f"STORE_ERROR: {type(e).__name__}")
        return store_error_response(e)

    if entry is None:
        return error_response(404, "Not found")
    return verify_entry_hash(entry).to_dict()


@app.get("/health", tags=["System"])
def health():
    return {
        "status": "online",
        "modules": ["Classifier", "Signer", "EntryStore", "Workflow"],
        "time": datetime.now(timezone.utc).isoformat(),
    }
