"""
Case intake endpoints
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from klamai.core.logger import logger
from klamai.db.database import get_db
from klamai.db.models import Case
from klamai.db.schemas import (
    BackgroundProcessingRequest,
    CaseEnvelope,
    ChatIntakeRequest,
    ChatIntakeResponse,
    DraftCaseRequest,
    DraftCaseResponse,
    ManualCaseRequest,
)
from klamai.services.attachment_transfer import parse_file_references
from klamai.services.case_intake_service import create_draft_case, create_manual_case
from klamai.services.case_queue import case_queue
from klamai.services.proposal_service import generate_proposal
from klamai.utils.exceptions import CaseNotFoundError

router = APIRouter()


def _error(status_code: int, message: str, model=CaseEnvelope) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model(success=False, error=message).model_dump(exclude_unset=True),
    )


def _get_case(db: Session, caso_id: str) -> Case:
    try:
        key = uuid.UUID(str(caso_id))
    except ValueError:
        raise CaseNotFoundError(caso_id)
    case = db.get(Case, key)
    if case is None:
        raise CaseNotFoundError(caso_id)
    return case


# ============================================================================
# Manual intake (admin)
# ============================================================================

@router.post("/manual")
async def add_manual_case(request: ManualCaseRequest, db: Session = Depends(get_db)):
    """
    Create a draft case from free text and queue its analysis.

    Returns as soon as the draft exists; summary, guide, classification and
    proposal are produced by the background worker. Nothing is created when
    the queue cannot take the job.
    """
    try:
        case_queue.ensure_accepting()
        case, extracted = await create_manual_case(db, request.caseText)
    except HTTPException as e:
        return _error(e.status_code, e.detail)
    except Exception as e:
        db.rollback()
        logger.exception("Manual case intake failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    client_name = " ".join(
        part for part in (extracted.cliente.nombre, extracted.cliente.apellido) if part
    ) or None
    try:
        case_queue.dispatch(
            db,
            case,
            transcripcion_chat=case.transcripcion_chat,
            motivo_consulta=case.motivo_consulta,
            include_proposal=True,
            client_name=client_name,
            case_text=request.caseText,
            extracted=extracted.model_dump(mode="json"),
        )
    except HTTPException as e:
        # The queue filled up during extraction; drop the draft nobody will process
        logger.warning("Discarding case %s: %s", case.id, e.detail)
        db.delete(case)
        db.commit()
        return _error(e.status_code, e.detail)

    return CaseEnvelope(
        success=True,
        caso=case.to_dict(),
        message="Caso creado. El análisis se está procesando.",
    ).model_dump(exclude_unset=True)


# ============================================================================
# Chat flow
# ============================================================================

@router.post("/draft")
async def create_draft(request: DraftCaseRequest, db: Session = Depends(get_db)):
    if not request.motivo_consulta or not request.session_token:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "motivo_consulta y session_token son requeridos",
            DraftCaseResponse,
        )
    case = create_draft_case(db, request.motivo_consulta, request.session_token)
    return DraftCaseResponse(success=True, caso_id=str(case.id)).model_dump(exclude_unset=True)


@router.post("/chat")
async def chat_intake(request: ChatIntakeRequest, db: Session = Depends(get_db)):
    """
    Chat hand-off: the proposal is generated while the client waits, the
    rest of the analysis is queued.
    """
    if not request.caso_id or not request.resumen_caso or not request.nombre_borrador:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "caso_id, resumen_caso y nombre_borrador son requeridos",
            ChatIntakeResponse,
        )
    try:
        case = _get_case(db, request.caso_id)
        case_queue.ensure_accepting()
        propuesta = await generate_proposal(request.resumen_caso, request.nombre_borrador)
        case.propuesta_estructurada = propuesta
        if request.nombre_borrador and not case.nombre_borrador:
            case.nombre_borrador = request.nombre_borrador

        # The proposal is committed together with the dispatch
        case_queue.dispatch(
            db,
            case,
            resumen_caso=request.resumen_caso,
            transcripcion_chat=request.transcripcion_chat,
            motivo_consulta=request.motivo_consulta,
            files=parse_file_references(request.files),
        )
    except HTTPException as e:
        db.rollback()
        return _error(e.status_code, e.detail, ChatIntakeResponse)
    except Exception as e:
        db.rollback()
        logger.exception("Chat intake failed for case %s", request.caso_id)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), ChatIntakeResponse)

    return ChatIntakeResponse(
        success=True, propuesta=propuesta, message="Propuesta generada con éxito."
    ).model_dump(exclude_unset=True)


# ============================================================================
# Background trigger
# ============================================================================

@router.post("/process-background", status_code=status.HTTP_202_ACCEPTED)
async def process_background(request: BackgroundProcessingRequest, db: Session = Depends(get_db)):
    if not request.caso_id or not request.transcripcion_chat:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Faltan parámetros críticos: caso_id y transcripcion_chat son requeridos.",
        )
    try:
        case = _get_case(db, request.caso_id)
        case_queue.dispatch(
            db,
            case,
            resumen_caso=request.resumen_caso,
            transcripcion_chat=request.transcripcion_chat,
            motivo_consulta=request.motivo_consulta,
            files=parse_file_references(request.files),
        )
    except HTTPException as e:
        return _error(e.status_code, e.detail)

    return CaseEnvelope(
        success=True, message="El análisis en background del caso ha sido encolado."
    ).model_dump(exclude_unset=True)


# ============================================================================
# Read
# ============================================================================

@router.get("/{caso_id}")
def get_case(caso_id: str, db: Session = Depends(get_db)):
    case = _get_case(db, caso_id)
    return CaseEnvelope(success=True, caso=case.to_dict()).model_dump(exclude_unset=True)
