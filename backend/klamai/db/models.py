"""
SQLAlchemy ORM Models (tables shared with the client web application)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from klamai.db.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ============================================================================
# Enums
# ============================================================================

class CaseState(str, enum.Enum):
    """Case lifecycle state"""
    borrador = "borrador"
    disponible = "disponible"
    asignado = "asignado"
    en_progreso = "en_progreso"
    listo_para_propuesta = "listo_para_propuesta"
    esperando_pago = "esperando_pago"
    cerrado = "cerrado"


class LeadTier(str, enum.Enum):
    """Lead tier assigned by the classifier"""
    estandar = "estandar"
    premium = "premium"
    urgente = "urgente"


class ProcessingStatus(str, enum.Enum):
    """Background processing run status"""
    pending = "pending"
    generating = "generating"
    finalizing = "finalizing"
    completed = "completed"
    failed = "failed"


class ProfileType(str, enum.Enum):
    individual = "individual"
    empresa = "empresa"


class AttentionChannel(str, enum.Enum):
    manual_admin = "manual_admin"
    chat = "chat"


# Forward-only moves. Reverting to borrador is done explicitly by the
# processing pipeline and never goes through this table.
ALLOWED_TRANSITIONS: dict[CaseState, frozenset[CaseState]] = {
    CaseState.borrador: frozenset({CaseState.disponible, CaseState.esperando_pago}),
    CaseState.disponible: frozenset(
        {CaseState.asignado, CaseState.listo_para_propuesta, CaseState.esperando_pago}
    ),
    CaseState.asignado: frozenset({CaseState.en_progreso, CaseState.listo_para_propuesta}),
    CaseState.en_progreso: frozenset({CaseState.listo_para_propuesta}),
    CaseState.listo_para_propuesta: frozenset({CaseState.cerrado, CaseState.esperando_pago}),
    CaseState.esperando_pago: frozenset(
        {CaseState.disponible, CaseState.asignado, CaseState.cerrado}
    ),
    CaseState.cerrado: frozenset(),
}


def can_transition(current: CaseState, target: CaseState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# ============================================================================
# Models
# ============================================================================

class Specialty(Base):
    """Canonical legal practice area"""
    __tablename__ = "especialidades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre = Column(String(120), unique=True, nullable=False, index=True)

    cases = relationship("Case", back_populates="especialidad")


class Case(Base):
    """Client consultation / legal case"""
    __tablename__ = "casos"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Lifecycle
    estado = Column(SQLEnum(CaseState), nullable=False, default=CaseState.borrador, index=True)
    canal_atencion = Column(SQLEnum(AttentionChannel), nullable=True)
    session_token = Column(String(255), nullable=True, index=True)

    # Linked client profile (authoritative when present)
    cliente_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    cliente_nombre = Column(String(255), nullable=True)
    cliente_apellido = Column(String(255), nullable=True)
    cliente_email = Column(String(255), nullable=True)
    cliente_telefono = Column(String(50), nullable=True)
    cliente_ciudad = Column(String(255), nullable=True)

    # Draft client snapshot (captured before any account exists)
    nombre_borrador = Column(String(255), nullable=True)
    apellido_borrador = Column(String(255), nullable=True)
    email_borrador = Column(String(255), nullable=True)
    telefono_borrador = Column(String(50), nullable=True)
    ciudad_borrador = Column(String(255), nullable=True)
    tipo_perfil_borrador = Column(SQLEnum(ProfileType), nullable=True, default=ProfileType.individual)
    razon_social_borrador = Column(String(255), nullable=True)
    nif_cif_borrador = Column(String(50), nullable=True)
    nombre_gerente_borrador = Column(String(255), nullable=True)
    direccion_fiscal_borrador = Column(Text, nullable=True)

    # Consultation
    motivo_consulta = Column(Text, nullable=True)
    preferencia_horaria_contacto = Column(String(255), nullable=True)

    # AI generated content
    resumen_caso = Column(Text, nullable=True)
    guia_abogado = Column(Text, nullable=True)
    propuesta_estructurada = Column(JSONType, nullable=True)
    especialidad_id = Column(Integer, ForeignKey("especialidades.id"), nullable=True)
    tipo_lead = Column(SQLEnum(LeadTier), nullable=True)
    valor_estimado = Column(String(255), nullable=True)
    transcripcion_chat = Column(JSONType, nullable=True)
    documentos_adjuntos = Column(JSONType, nullable=True)

    # Background processing bookkeeping
    estado_procesamiento = Column(SQLEnum(ProcessingStatus), nullable=True)
    version_procesamiento = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    especialidad = relationship("Specialty", back_populates="cases")

    def contact_snapshot(self) -> dict:
        """Client contact fields, preferring the linked profile over the draft per field."""
        pairs = {
            "nombre": (self.cliente_nombre, self.nombre_borrador),
            "apellido": (self.cliente_apellido, self.apellido_borrador),
            "email": (self.cliente_email, self.email_borrador),
            "telefono": (self.cliente_telefono, self.telefono_borrador),
            "ciudad": (self.cliente_ciudad, self.ciudad_borrador),
        }
        if self.cliente_id is None:
            return {field: draft for field, (_, draft) in pairs.items()}
        return {
            field: linked if linked is not None else draft
            for field, (linked, draft) in pairs.items()
        }

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "estado": self.estado.value if self.estado else None,
            "canal_atencion": self.canal_atencion.value if self.canal_atencion else None,
            "motivo_consulta": self.motivo_consulta,
            "resumen_caso": self.resumen_caso,
            "guia_abogado": self.guia_abogado,
            "propuesta_estructurada": self.propuesta_estructurada,
            "especialidad_id": self.especialidad_id,
            "tipo_lead": self.tipo_lead.value if self.tipo_lead else None,
            "valor_estimado": self.valor_estimado,
            "documentos_adjuntos": self.documentos_adjuntos,
            "estado_procesamiento": (
                self.estado_procesamiento.value if self.estado_procesamiento else None
            ),
            "cliente": self.contact_snapshot(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
