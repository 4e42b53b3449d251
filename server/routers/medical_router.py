# =============================================================================
# routers/medical_router.py
# =============================================================================

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from core.config import settings
from services.medical_apis import MedicalAggregator
from services.session import SessionStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Medical Aggregation"])

# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AnalyzeRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=settings.max_message_length)
    session_id: Optional[str] = None
    profile: Optional[Dict] = None

class MedicationLookupRequest(BaseModel):
    medication: str = Field(..., min_length=1, max_length=200)

class ClinicalTrialsRequest(BaseModel):
    condition: str = Field(..., min_length=1, max_length=200)
    limit: int = Field(default=10, ge=1, le=50)
    statuses: Optional[List[str]] = None
    phases: Optional[List[str]] = None

class HealthInfoRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=200)

# =============================================================================
# DEPENDENCY INJECTION (lifespan-owned instances)
# =============================================================================

def get_aggregator(request: Request) -> MedicalAggregator:
    return request.app.state.aggregator

def get_session_storage(request: Request) -> SessionStorage:
    return request.app.state.sessions

# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/analyze")
async def analyze_message(
    request: AnalyzeRequest,
    aggregator: MedicalAggregator = Depends(get_aggregator),
    sessions: SessionStorage = Depends(get_session_storage)
):
    """Aggregate every medical source for a free-text message"""
    session_id = request.session_id or str(uuid.uuid4())
    logger.info(f"💬 Analyze request for session {session_id}")

    # Invalid profiles raise ValidationError, mapped to 422 in main
    result = await aggregator.analyze(request.message, request.profile)

    history_length = await sessions.append_exchange(session_id, request.message, {
        "extracted_terms": list(result.extracted_terms),
        "api_sources": list(result.api_sources),
        "confidence": result.confidence
    })

    return {
        "success": True,
        "session_id": session_id,
        "analysis": result.to_dict(),
        "confidence_details": aggregator.confidence_breakdown(result),
        "history_length": history_length
    }

@router.post("/medication-lookup")
async def medication_lookup(
    request: MedicationLookupRequest,
    aggregator: MedicalAggregator = Depends(get_aggregator)
):
    return {"success": True, "data": await aggregator.lookup_medication(request.medication)}

@router.post("/clinical-trials")
async def clinical_trials(
    request: ClinicalTrialsRequest,
    aggregator: MedicalAggregator = Depends(get_aggregator)
):
    trials = await aggregator.search_trials(
        request.condition, statuses=request.statuses, phases=request.phases, limit=request.limit
    )
    return {
        "success": True,
        "condition": request.condition,
        "total": len(trials),
        "trials": [trial.to_dict() for trial in trials]
    }

@router.post("/health-info")
async def health_info(
    request: HealthInfoRequest,
    aggregator: MedicalAggregator = Depends(get_aggregator)
):
    return {"success": True, "data": await aggregator.search_health_information(request.topic)}

@router.get("/session/{session_id}/context")
async def session_context(session_id: str, sessions: SessionStorage = Depends(get_session_storage)):
    return await sessions.get_context(session_id)

@router.delete("/session/{session_id}")
async def clear_session(session_id: str, sessions: SessionStorage = Depends(get_session_storage)):
    await sessions.delete_session_data(session_id)
    return {
        "message": f"Session {session_id} cleared",
        "timestamp": datetime.now().isoformat()
    }

@router.get("/cache/stats")
async def cache_stats(aggregator: MedicalAggregator = Depends(get_aggregator)):
    return aggregator.cache_stats()

@router.delete("/cache")
async def clear_cache(aggregator: MedicalAggregator = Depends(get_aggregator)):
    removed = aggregator.clear_cache()
    return {
        "message": "Cache cleared",
        "entries_removed": removed,
        "timestamp": datetime.now().isoformat()
    }
