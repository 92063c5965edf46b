"""
Case intake: turns free text pasted by an admin (or a chat hand-off) into a
draft case record. Only the extraction LLM call happens here; everything
expensive runs later on the processing queue.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from klamai.core.logger import logger
from klamai.db.models import AttentionChannel, Case, CaseState, ProfileType
from klamai.services.assistant_service import AssistantRunner, assistant_runner
from klamai.services.json_parser import parse_llm_json
from klamai.services.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from klamai.utils.exceptions import InvalidCaseTextError
from klamai.utils.helpers import truncate_text, utc_now_iso

DEFAULT_MANUAL_REASON = "Consulta manual sin detalles específicos"


def _blank_to_none(v):
    if isinstance(v, str):
        return v.strip() or None
    return v


class ExtractedClient(BaseModel):
    nombre: Optional[str] = None
    apellido: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    ciudad: Optional[str] = None
    tipo_perfil: Optional[ProfileType] = None
    razon_social: Optional[str] = None
    nif_cif: Optional[str] = None
    nombre_gerente: Optional[str] = None
    direccion_fiscal: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _clean(cls, v):
        return _blank_to_none(v)

    @field_validator("tipo_perfil", mode="before")
    @classmethod
    def _unknown_profile_is_null(cls, v):
        if isinstance(v, str) and v.lower() in ProfileType.__members__:
            return v.lower()
        return None


class ExtractedConsultation(BaseModel):
    motivo_consulta: Optional[str] = None
    detalles_adicionales: Optional[str] = None
    urgencia: Optional[str] = None
    preferencia_horaria: Optional[str] = None
    especialidad_legal: Optional[str] = None
    tipo_lead: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _clean(cls, v):
        if v is not None and not isinstance(v, str):
            return None
        return _blank_to_none(v)


class ExtractedCase(BaseModel):
    """Extraction output; any field the model could not fill stays null."""
    cliente: ExtractedClient = Field(default_factory=ExtractedClient)
    consulta: ExtractedConsultation = Field(default_factory=ExtractedConsultation)

    @field_validator("cliente", "consulta", mode="before")
    @classmethod
    def _missing_section(cls, v):
        return v if isinstance(v, dict) else {}


async def extract_case_data(
    case_text: str, runner: Optional[AssistantRunner] = None
) -> ExtractedCase:
    """Run the extraction prompt and parse its JSON answer."""
    runner = runner or assistant_runner
    raw = await runner.complete(
        EXTRACTION_SYSTEM_PROMPT,
        build_extraction_prompt(case_text),
        temperature=0.1,
        max_tokens=1000,
    )
    return parse_llm_json(raw, ExtractedCase)


def build_transcript_blob(case_text: str, extracted: ExtractedCase) -> dict[str, Any]:
    return {
        "texto_original": case_text,
        "fecha_procesamiento": utc_now_iso(),
        "procesado_por": AttentionChannel.manual_admin.value,
        "extraccion": extracted.model_dump(mode="json"),
    }


async def create_manual_case(
    db: Session,
    case_text: Optional[str],
    runner: Optional[AssistantRunner] = None,
) -> tuple[Case, ExtractedCase]:
    """
    Extract structured data from *case_text* and insert a draft case.

    Nothing is written when the text is blank or extraction fails.
    Classification fields (specialty, lead tier, value) are left for the
    background pipeline.
    """
    if not case_text or not case_text.strip():
        raise InvalidCaseTextError()

    logger.info("Processing manual case: %s", truncate_text(case_text, 100))
    extracted = await extract_case_data(case_text, runner)
    cliente = extracted.cliente
    consulta = extracted.consulta

    case = Case(
        estado=CaseState.borrador,
        canal_atencion=AttentionChannel.manual_admin,
        motivo_consulta=consulta.motivo_consulta or DEFAULT_MANUAL_REASON,
        nombre_borrador=cliente.nombre,
        apellido_borrador=cliente.apellido,
        email_borrador=cliente.email,
        telefono_borrador=cliente.telefono,
        ciudad_borrador=cliente.ciudad,
        tipo_perfil_borrador=cliente.tipo_perfil or ProfileType.individual,
        razon_social_borrador=cliente.razon_social,
        nif_cif_borrador=cliente.nif_cif,
        nombre_gerente_borrador=cliente.nombre_gerente,
        direccion_fiscal_borrador=cliente.direccion_fiscal,
        preferencia_horaria_contacto=consulta.preferencia_horaria,
        transcripcion_chat=build_transcript_blob(case_text, extracted),
    )
    db.add(case)
    db.commit()
    db.refresh(case)

    logger.info("Manual case created: %s", case.id)
    return case, extracted


def create_draft_case(db: Session, motivo_consulta: str, session_token: str) -> Case:
    """Bare draft opened by the chat widget before the conversation starts."""
    case = Case(
        estado=CaseState.borrador,
        canal_atencion=AttentionChannel.chat,
        motivo_consulta=motivo_consulta,
        session_token=session_token,
    )
    db.add(case)
    db.commit()
    db.refresh(case)
    logger.info("Draft case created: %s", case.id)
    return case
