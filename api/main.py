import os
import logging
from functools import lru_cache
from typing import Dict, List, Optional
from fastapi import FastAPI, Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from lve360_shared.config import ConfigurationError
from lve360_shared.db_writer import fetch_stack_items
from lve360_shared.generator import StackGenerator, build_default_generator
from lve360_shared.intake import SubmissionNotFound
from lve360_shared.logging_config import setup_logging

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

LOG = logging.getLogger("lve360.api")

# ---- Pydantic models ----
class GenerateRequest(BaseModel):
    submission_id: str = Field(..., description="Intake submission to generate a stack for")

class GenerateResponse(BaseModel):
    submission_id: str
    stack_id: Optional[str] = None
    saved: bool
    safety_status: str
    validation_passed: bool
    model_used: Optional[str] = None
    items_inserted: int = 0
    removed: List[str] = Field(default_factory=list)
    total_tokens: int = 0
    markdown: str

# ---- auth (private preview) ----
security = HTTPBasic()
DEMO_USER = os.getenv("DEMO_USER", "demo")
DEMO_PW = os.getenv("DEMO_PW", "demo123")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

def guard(creds: HTTPBasicCredentials = Depends(security)):
    if creds.username != DEMO_USER or creds.password != DEMO_PW:
        raise HTTPException(401, "Unauthorized")

api = FastAPI(title="LVE360 Stack API", version="0.1.0")

CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
ALLOWED_ORIGINS = CORS_ALLOW_ORIGINS.split(",") if CORS_ALLOW_ORIGINS else []

api.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@lru_cache(maxsize=1)
def _default_generator() -> StackGenerator:
    setup_logging(component="api")
    return build_default_generator()

def get_generator() -> StackGenerator:
    try:
        return _default_generator()
    except ConfigurationError as e:
        LOG.error(f"Configuration error: {e}")
        raise HTTPException(status_code=500, detail=f"Server misconfigured: {str(e)}")

def get_items_reader():
    return fetch_stack_items

@api.get("/")
def root():
    return {
        "message": "LVE360 Stack API is running!",
        "version": "0.1.0",
        "endpoints": {
            "health": "/healthz",
            "generate": "/stack/generate (POST, requires auth)",
            "items": "/stack/{submission_id}/items (GET, requires auth)",
            "docs": "/docs"
        }
    }

@api.get("/healthz")
def healthz():
    return {
        "ok": True,
        "backend_configured": bool(os.getenv("OPENAI_API_KEY")),
        "db_configured": bool(os.getenv("LVE360_DB_DSN")),
    }

@api.post("/stack/generate", response_model=GenerateResponse)
def generate_stack(request: GenerateRequest, _=Depends(guard), generator: StackGenerator = Depends(get_generator)):
    """
    Generate, safety-screen and persist a supplement stack for a submission.

    The narrative is always returned, even when validation failed or the
    stack could not be saved; check `saved` and `safety_status`.
    """
    try:
        result = generator.generate(request.submission_id)
    except ConfigurationError as e:
        LOG.error(f"Configuration error: {e}")
        raise HTTPException(status_code=500, detail=f"Server misconfigured: {str(e)}")
    except SubmissionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return GenerateResponse(
        submission_id=request.submission_id,
        stack_id=result.stack_id,
        saved=result.saved,
        safety_status=result.safety_status,
        validation_passed=bool(result.validation and result.validation.passed),
        model_used=result.model_used,
        items_inserted=result.items_inserted,
        removed=result.removed,
        total_tokens=result.usage.total_tokens,
        markdown=result.markdown,
    )

@api.get("/stack/{submission_id}/items")
def stack_items(submission_id: str, _=Depends(guard), reader=Depends(get_items_reader)) -> Dict:
    try:
        items = reader(submission_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=f"Server misconfigured: {str(e)}")
    return {"submission_id": submission_id, "count": len(items), "items": items}
