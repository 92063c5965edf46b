"""
Pydantic validation schemas
"""
from pydantic import BaseModel
from typing import Any, Optional, Dict

# ============================================================================
# Intake
# ============================================================================

class ManualCaseRequest(BaseModel):
    """Free-text case pasted by an admin"""
    caseText: Optional[str] = None


class DraftCaseRequest(BaseModel):
    """Bare draft created by the chat widget before the conversation starts"""
    motivo_consulta: Optional[str] = None
    session_token: Optional[str] = None


class BackgroundProcessingRequest(BaseModel):
    """Trigger for the out-of-band analysis of an existing case"""
    caso_id: Optional[str] = None
    resumen_caso: Optional[str] = None
    transcripcion_chat: Optional[Any] = None
    motivo_consulta: Optional[str] = None
    files: Optional[Any] = None


class ChatIntakeRequest(BackgroundProcessingRequest):
    """Chat flow hand-off: immediate proposal, then background analysis"""
    nombre_borrador: Optional[str] = None


# ============================================================================
# Responses
# ============================================================================

class CaseEnvelope(BaseModel):
    success: bool
    caso: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None


class ChatIntakeResponse(BaseModel):
    success: bool
    propuesta: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None


class DraftCaseResponse(BaseModel):
    success: bool
    caso_id: Optional[str] = None
    error: Optional[str] = None
