"""
Background analysis of a case.

One run per ProcessingJob:

    pending -> generating -> finalizing -> completed   (estado: disponible)
                          \-> failed                    (estado: borrador)

The summary is generated first when the caller did not provide one (manual
intake). Guide, classification, the optional proposal and every attachment
transfer then run concurrently and are all awaited before anything is
inspected. Guide and classification are required; the proposal and the
attachments are best effort.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from klamai.core.config import settings
from klamai.db.database import SessionLocal
from klamai.db.models import CaseState, ProcessingStatus
from klamai.services.assistant_service import AssistantRunner, assistant_runner
from klamai.services.attachment_transfer import (
    AttachmentTransferService,
    get_attachment_transfer_service,
    partition_transfers,
)
from klamai.services.case_finalizer import (
    DEFAULT_MOTIVO,
    CaseOutcome,
    finalize_case,
    mark_processing_status,
    revert_to_draft,
)
from klamai.services.json_parser import parse_llm_json
from klamai.services.notification_service import WhatsAppNotifier, whatsapp_notifier
from klamai.services.object_storage import ObjectStorage
from klamai.services.proposal_service import generate_proposal
from klamai.services.prompts import (
    SUMMARY_SYSTEM_PROMPT,
    build_classifier_prompt,
    build_guide_prompt,
    build_summary_prompt,
)
from klamai.services.specialty_resolver import ClassificationResult, resolve_specialty_id
from klamai.utils.exceptions import GenerationStepError, StaleProcessingRunError

logger = logging.getLogger(__name__)


@dataclass
class ProcessingJob:
    """A queued request to (re)process one case."""
    caso_id: str
    version: int
    resumen_caso: Optional[str] = None
    transcripcion_chat: Any = None
    motivo_consulta: Optional[str] = None
    files: list[str] = field(default_factory=list)
    include_proposal: bool = False
    client_name: Optional[str] = None
    # Manual intake only: the pasted text and its extraction
    case_text: Optional[str] = None
    extracted: Optional[dict] = None


class CasePipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        runner: Optional[AssistantRunner] = None,
        transfer_service: Optional[AttachmentTransferService] = None,
        storage: Optional[ObjectStorage] = None,
        notifier: Optional[WhatsAppNotifier] = None,
    ):
        self.session_factory = session_factory
        self.runner = runner or assistant_runner
        self._transfer_service = transfer_service
        self._storage = storage
        self.notifier = notifier or whatsapp_notifier

    @property
    def transfer_service(self) -> AttachmentTransferService:
        if self._transfer_service is None:
            self._transfer_service = get_attachment_transfer_service()
        return self._transfer_service

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = self.transfer_service.destination
        return self._storage

    async def process(self, job: ProcessingJob) -> bool:
        """
        Run the analysis for *job*. Returns True when the run was finalized (the
        case is published unless it was already past disponible), False when
        it failed or was superseded.
        """
        db = self.session_factory()
        try:
            try:
                mark_processing_status(db, job.caso_id, job.version, ProcessingStatus.generating)
                outcome = await self._generate(db, job)
                case = await finalize_case(db, self.storage, job.caso_id, job.version, outcome)
            except StaleProcessingRunError as e:
                logger.info("Dropping superseded run: %s", e)
                return False
            except GenerationStepError as e:
                logger.error("Case %s processing failed: %s", job.caso_id, e)
                self._revert(db, job, str(e))
                return False
            except Exception as e:
                db.rollback()
                logger.exception("Case %s processing crashed", job.caso_id)
                self._revert(db, job, str(e))
                return False

            if case.estado is CaseState.disponible:
                await self.notifier.notify_case_available(case.to_dict())
            return True
        finally:
            db.close()

    def _revert(self, db: Session, job: ProcessingJob, reason: str) -> None:
        try:
            revert_to_draft(db, job.caso_id, job.version, reason)
        except StaleProcessingRunError as e:
            logger.info("Not reverting superseded run: %s", e)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(self, db: Session, job: ProcessingJob) -> CaseOutcome:
        summary = job.resumen_caso
        if not summary or not summary.strip():
            summary = await self._required("resumen", self._generate_summary(job))

        source_keys: list[str] = []
        if job.files:
            source_keys = self.transfer_service.keys_from_urls(job.files)
        logger.info(
            "Case %s: generating (v%s) proposal=%s attachments=%d",
            job.caso_id, job.version, job.include_proposal, len(source_keys),
        )

        branches = [self._generate_guide(summary), self._classify(summary)]
        if job.include_proposal:
            branches.append(generate_proposal(summary, job.client_name, self.runner))
        branches.extend(
            self.transfer_service.transfer(key, job.caso_id) for key in source_keys
        )

        outcomes = await asyncio.gather(*branches, return_exceptions=True)
        guide, classification = outcomes[0], outcomes[1]
        rest = list(outcomes[2:])
        proposal = rest.pop(0) if job.include_proposal else None

        if isinstance(guide, BaseException):
            raise GenerationStepError("guia", str(guide)) from guide
        if isinstance(classification, BaseException):
            raise GenerationStepError("clasificacion", str(classification)) from classification

        if isinstance(proposal, BaseException):
            logger.warning("Case %s: proposal generation failed: %s", job.caso_id, proposal)
            proposal = None

        transferred, failed = partition_transfers(source_keys, rest)
        for failure in failed:
            logger.error(
                "Case %s: attachment %s skipped: %s",
                job.caso_id, failure.source_key, failure.reason,
            )

        return CaseOutcome(
            resumen_caso=summary,
            guia_abogado=guide,
            tipo_lead=classification.tipo_lead,
            especialidad_id=resolve_specialty_id(db, classification.especialidad_nombre),
            motivo_consulta=(
                classification.motivo_consulta_ia or job.motivo_consulta or DEFAULT_MOTIVO
            ),
            valor_estimado=classification.valor_estimado,
            transcripcion_chat=job.transcripcion_chat,
            documentos_adjuntos=[t.destination_path for t in transferred],
            propuesta_estructurada=proposal,
        )

    @staticmethod
    async def _required(step: str, coro) -> Any:
        try:
            return await coro
        except Exception as e:
            raise GenerationStepError(step, str(e)) from e

    async def _generate_summary(self, job: ProcessingJob) -> str:
        source_text = job.case_text or _transcript_text(job.transcripcion_chat) or job.motivo_consulta
        if not source_text:
            raise ValueError("No text available to summarise")
        summary = await self.runner.complete(
            SUMMARY_SYSTEM_PROMPT,
            build_summary_prompt(job.extracted or {}, source_text),
            temperature=0.3,
            max_tokens=800,
        )
        if not summary.strip():
            raise ValueError("Summary model returned no content")
        return summary.strip()

    async def _generate_guide(self, summary: str) -> str:
        guide = await self.runner.run(settings.ASISTENTE_AUXILIAR_ID, build_guide_prompt(summary))
        if not guide.strip():
            raise ValueError("Guide assistant returned no content")
        return guide

    async def _classify(self, summary: str) -> ClassificationResult:
        raw = await self.runner.run(
            settings.ASISTENTE_CLASIFICADOR_ID, build_classifier_prompt(summary)
        )
        return parse_llm_json(raw, ClassificationResult)


def _transcript_text(transcript: Any) -> str:
    if not transcript:
        return ""
    if isinstance(transcript, str):
        return transcript
    if isinstance(transcript, dict) and transcript.get("texto_original"):
        return str(transcript["texto_original"])
    return json.dumps(transcript, ensure_ascii=False)


# Singleton
case_pipeline = CasePipeline()
