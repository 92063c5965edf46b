"""
Client-facing proposal generation (proposal assistant).
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, field_validator

from klamai.core.config import settings
from klamai.services.assistant_service import AssistantRunner, assistant_runner
from klamai.services.json_parser import parse_llm_json
from klamai.services.prompts import build_proposal_prompt
from klamai.utils.exceptions import AssistantRunError


class ProposalContent(BaseModel):
    titulo_personalizado: str
    subtitulo_refuerzo: Optional[str] = None
    etiqueta_caso: str

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v


async def generate_proposal(
    case_summary: str,
    client_name: Optional[str],
    runner: Optional[AssistantRunner] = None,
) -> dict:
    """
    Ask the proposal assistant for the personalised proposal copy.

    Raises AssistantRunError when the assistant answers with nothing and
    LlmJsonParseError when the answer is not a proposal object.
    """
    runner = runner or assistant_runner
    raw = await runner.run(
        settings.ASISTENTE_PROPUESTAS_ID,
        build_proposal_prompt(case_summary, client_name),
    )
    if not raw or not raw.strip():
        raise AssistantRunError("Proposal assistant returned no content")
    proposal = parse_llm_json(raw, ProposalContent)
    return proposal.model_dump()
