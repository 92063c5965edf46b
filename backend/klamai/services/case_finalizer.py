"""
Persistence of a processing run's outcome.

Both the success path (finalize_case) and the failure path (revert_to_draft)
write through a single UPDATE guarded by ``version_procesamiento``: when a
newer run has been dispatched for the case the UPDATE matches no row and the
older run raises StaleProcessingRunError without touching the record.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from klamai.db.models import Case, CaseState, LeadTier, ProcessingStatus
from klamai.services.object_storage import ObjectStorage
from klamai.utils.exceptions import StaleProcessingRunError

logger = logging.getLogger(__name__)

ERROR_SUMMARY_PREFIX = "Error en el procesamiento: "
DEFAULT_MOTIVO = "Consulta General"

# Only these states are promoted to disponible; a case already assigned to a
# lawyer keeps its state when it is reprocessed.
_PUBLISHABLE_STATES = (CaseState.borrador, CaseState.disponible)


def guide_path(caso_id: str) -> str:
    return f"casos/{caso_id}/guia_para_abogado.txt"


@dataclass
class CaseOutcome:
    """Everything a successful run writes to the case in one go."""
    resumen_caso: str
    guia_abogado: str
    tipo_lead: LeadTier
    especialidad_id: Optional[int]
    motivo_consulta: str
    valor_estimado: Optional[str] = None
    transcripcion_chat: Any = None
    documentos_adjuntos: list[str] = field(default_factory=list)
    propuesta_estructurada: Optional[dict] = None


def _guarded(db: Session, caso_id: str, version: int):
    return db.query(Case).filter(
        Case.id == _as_uuid(caso_id),
        Case.version_procesamiento == version,
    )


def _as_uuid(caso_id) -> uuid.UUID:
    return caso_id if isinstance(caso_id, uuid.UUID) else uuid.UUID(str(caso_id))


def _current_state(db: Session, caso_id: str) -> Optional[CaseState]:
    return db.query(Case.estado).filter(Case.id == _as_uuid(caso_id)).scalar()


def mark_processing_status(
    db: Session, caso_id: str, version: int, status: ProcessingStatus
) -> None:
    """Move the run to *status*; raises StaleProcessingRunError if superseded."""
    updated = _guarded(db, caso_id, version).update(
        {
            Case.estado_procesamiento: status,
            Case.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )
    if not updated:
        db.rollback()
        raise StaleProcessingRunError(str(caso_id), version)
    db.commit()


async def finalize_case(
    db: Session,
    storage: ObjectStorage,
    caso_id: str,
    version: int,
    outcome: CaseOutcome,
) -> Case:
    """
    Publish a successful run.

    The guide is uploaded first (overwriting any previous one at the same
    path), then every structured field, the new estado and
    ``estado_procesamiento=completed`` are written in one UPDATE. Running it
    twice with the same outcome leaves the case and the bucket unchanged.
    """
    mark_processing_status(db, caso_id, version, ProcessingStatus.finalizing)

    await asyncio.to_thread(storage.put_text, guide_path(caso_id), outcome.guia_abogado)

    current = _current_state(db, caso_id)
    if current in _PUBLISHABLE_STATES:
        target_state = CaseState.disponible
    else:
        logger.warning(
            "Case %s is %s; keeping its state after reprocessing", caso_id, current
        )
        target_state = current

    values = {
        Case.estado: target_state,
        Case.estado_procesamiento: ProcessingStatus.completed,
        Case.resumen_caso: outcome.resumen_caso,
        Case.guia_abogado: outcome.guia_abogado,
        Case.tipo_lead: outcome.tipo_lead,
        Case.valor_estimado: outcome.valor_estimado,
        Case.especialidad_id: outcome.especialidad_id,
        Case.motivo_consulta: outcome.motivo_consulta,
        Case.documentos_adjuntos: outcome.documentos_adjuntos or None,
        Case.updated_at: datetime.utcnow(),
    }
    if outcome.transcripcion_chat is not None:
        values[Case.transcripcion_chat] = outcome.transcripcion_chat
    if outcome.propuesta_estructurada is not None:
        values[Case.propuesta_estructurada] = outcome.propuesta_estructurada

    updated = _guarded(db, caso_id, version).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise StaleProcessingRunError(str(caso_id), version)
    db.commit()

    case = db.get(Case, _as_uuid(caso_id))
    logger.info(
        "Case %s finalized (v%s): estado=%s especialidad=%s adjuntos=%d",
        caso_id, version, target_state.value, outcome.especialidad_id,
        len(outcome.documentos_adjuntos),
    )
    return case


def revert_to_draft(db: Session, caso_id: str, version: int, reason: str) -> None:
    """
    Failure path: back to borrador with an error marker in resumen_caso.

    Classification and guide fields are cleared so that no half-classified
    data survives the failed run. A case past disponible keeps its estado
    and its previous analysis; only the run is marked as failed.
    """
    current = _current_state(db, caso_id)
    if current in _PUBLISHABLE_STATES:
        values = {
            Case.estado: CaseState.borrador,
            Case.estado_procesamiento: ProcessingStatus.failed,
            Case.resumen_caso: f"{ERROR_SUMMARY_PREFIX}{reason}",
            Case.guia_abogado: None,
            Case.especialidad_id: None,
            Case.tipo_lead: None,
            Case.valor_estimado: None,
            Case.updated_at: datetime.utcnow(),
        }
    else:
        values = {
            Case.estado_procesamiento: ProcessingStatus.failed,
            Case.updated_at: datetime.utcnow(),
        }

    updated = _guarded(db, caso_id, version).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise StaleProcessingRunError(str(caso_id), version)
    db.commit()
    if current in _PUBLISHABLE_STATES:
        logger.warning("Case %s reverted to borrador (v%s): %s", caso_id, version, reason)
    else:
        logger.warning(
            "Case %s reprocessing failed (v%s), keeping estado %s: %s",
            caso_id, version, current, reason,
        )
