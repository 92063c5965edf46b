"""
Maps classifier output onto canonical rows of the especialidades table.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from klamai.core.config import settings
from klamai.db.models import LeadTier, Specialty
from klamai.services.prompts import VALID_SPECIALTIES
from klamai.utils.helpers import strip_accents

logger = logging.getLogger(__name__)


class FallbackSpecialtyMissingError(RuntimeError):
    """The fallback specialty row does not exist and seeding is disabled."""


def normalize_lead_tier(value: object) -> object:
    """'Estándar ' -> 'estandar'. Non-strings are returned untouched."""
    if isinstance(value, str):
        return strip_accents(value).strip().lower()
    return value


class ClassificationResult(BaseModel):
    """Classifier assistant output"""
    motivo_consulta_ia: Optional[str] = None
    especialidad_nombre: Optional[str] = None
    tipo_lead: LeadTier
    valor_estimado: Optional[str] = None

    @field_validator("tipo_lead", mode="before")
    @classmethod
    def _normalize_tier(cls, v):
        return normalize_lead_tier(v)

    @field_validator("especialidad_nombre", "motivo_consulta_ia", "valor_estimado", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v


def fallback_specialty_id(db: Session) -> Optional[int]:
    row = (
        db.query(Specialty.id)
        .filter(Specialty.nombre == settings.FALLBACK_SPECIALTY_NAME)
        .first()
    )
    return row[0] if row else None


def resolve_specialty_id(db: Session, name: Optional[str]) -> Optional[int]:
    """
    Exact-name lookup; anything unknown (including a missing name) resolves
    to the fallback specialty. Only returns None if the fallback row itself
    is missing, which ensure_fallback_specialty() prevents at startup.
    """
    if name:
        row = db.query(Specialty.id).filter(Specialty.nombre == name).first()
        if row:
            return row[0]
        logger.warning(
            "Specialty %r not found, using fallback %r",
            name, settings.FALLBACK_SPECIALTY_NAME,
        )

    specialty_id = fallback_specialty_id(db)
    if specialty_id is None:
        logger.error("Fallback specialty %r is missing", settings.FALLBACK_SPECIALTY_NAME)
    return specialty_id


def ensure_fallback_specialty(db: Session, seed: bool = True) -> int:
    """
    Startup invariant: the fallback specialty must exist.

    With *seed* the full canonical catalogue is inserted when the fallback is
    missing; without it a FallbackSpecialtyMissingError is raised.
    """
    specialty_id = fallback_specialty_id(db)
    if specialty_id is not None:
        return specialty_id

    if not seed:
        raise FallbackSpecialtyMissingError(
            f"Specialty '{settings.FALLBACK_SPECIALTY_NAME}' does not exist"
        )

    existing = {name for (name,) in db.query(Specialty.nombre).all()}
    names = list(VALID_SPECIALTIES)
    if settings.FALLBACK_SPECIALTY_NAME not in names:
        names.append(settings.FALLBACK_SPECIALTY_NAME)
    for name in names:
        if name not in existing:
            db.add(Specialty(nombre=name))
    db.commit()
    logger.info("Seeded specialty catalogue (%d rows)", len(names) - len(existing & set(names)))
    return fallback_specialty_id(db)
