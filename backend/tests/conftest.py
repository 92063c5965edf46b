import os
import tempfile

# Settings are read at import time, so the environment must be in place
# before anything from klamai is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="klamai-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}"
os.environ["OPENAI_API_KEY"] = "sk-test"
os.environ["ASISTENTE_AUXILIAR_ID"] = "asst_guide"
os.environ["ASISTENTE_CLASIFICADOR_ID"] = "asst_classifier"
os.environ["ASISTENTE_PROPUESTAS_ID"] = "asst_proposal"
os.environ["MINIO_BUCKET_NAME"] = "uploads"
os.environ["MINIO_ENDPOINT"] = "minio.example.com"
os.environ["CASE_NOTIFICATIONS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "DEBUG"

import json  # noqa: E402
from typing import Any, Callable, Union  # noqa: E402

import pytest  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from klamai.db.database import Base  # noqa: E402
from klamai.db import models  # noqa: E402,F401
from klamai.services.specialty_resolver import ensure_fallback_specialty  # noqa: E402

GUIDE_ID = "asst_guide"
CLASSIFIER_ID = "asst_classifier"
PROPOSAL_ID = "asst_proposal"

CLASSIFICATION_JSON = json.dumps(
    {
        "motivo_consulta_ia": "Reclamación por despido improcedente",
        "especialidad_nombre": "Derecho Laboral",
        "tipo_lead": "premium",
        "valor_estimado": "1.500€ - 3.000€",
    }
)
PROPOSAL_JSON = (
    "```json\n"
    '{"titulo_personalizado": "Juan, vamos a por tu indemnización", '
    '"subtitulo_refuerzo": "Tu despido tiene defectos de forma.", '
    '"etiqueta_caso": "Despido"}\n'
    "```"
)
EXTRACTION_JSON = json.dumps(
    {
        "cliente": {
            "nombre": "Juan",
            "apellido": "Pérez",
            "email": "juan@example.com",
            "telefono": "+34 600 000 000",
            "ciudad": "Madrid",
            "tipo_perfil": "individual",
        },
        "consulta": {
            "motivo_consulta": "Despido improcedente",
            "detalles_adicionales": "Diez años en la empresa",
            "urgencia": "alta",
            "preferencia_horaria": "Mañanas",
            "especialidad_legal": "laboral",
            "tipo_lead": "premium",
        },
    }
)

Answer = Union[str, BaseException, Callable[[str], str]]


class FakeRunner:
    """Stands in for AssistantRunner; answers are keyed by assistant id."""

    def __init__(self, answers: dict[str, Answer] = None, completions: list[Answer] = None):
        self.answers = {
            GUIDE_ID: "Guía: solicitar carta de despido y nóminas.",
            CLASSIFIER_ID: CLASSIFICATION_JSON,
            PROPOSAL_ID: PROPOSAL_JSON,
        }
        self.answers.update(answers or {})
        self.completions = list(completions or [])
        self.run_calls: list[tuple[str, str]] = []
        self.complete_calls: list[tuple[str, str]] = []

    @staticmethod
    def _resolve(answer: Answer, content: str) -> str:
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(content)
        return answer

    async def run(self, assistant_id: str, content: str) -> str:
        self.run_calls.append((assistant_id, content))
        if assistant_id not in self.answers:
            raise RuntimeError(f"unexpected assistant {assistant_id}")
        return self._resolve(self.answers[assistant_id], content)

    async def complete(self, system_prompt: str, prompt: str, temperature=0.1, max_tokens=1000) -> str:
        self.complete_calls.append((system_prompt, prompt))
        if not self.completions:
            raise RuntimeError("no completion configured")
        return self._resolve(self.completions.pop(0), prompt)


class FakeStorage:
    """In-memory replacement for ObjectStorage."""

    def __init__(self, bucket: str, objects: dict[str, tuple[bytes, str]] = None):
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, str]] = dict(objects or {})
        self.uploads: list[str] = []

    def _missing(self, key: str) -> ClientError:
        return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")

    def stat(self, key: str) -> dict:
        if key not in self.objects:
            raise self._missing(key)
        data, content_type = self.objects[key]
        return {"content_length": len(data), "content_type": content_type, "last_modified": None}

    def iter_chunks(self, key: str, chunk_size: int = 4):
        if key not in self.objects:
            raise self._missing(key)
        data = self.objects[key][0]
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]

    def read(self, key: str) -> bytes:
        return b"".join(self.iter_chunks(key))

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.objects[path] = (data, content_type)
        self.uploads.append(path)
        return path

    def put_text(self, path: str, text: str) -> str:
        return self.upload(path, text.encode("utf-8"), content_type="text/plain;charset=utf-8")


class FakeNotifier:
    def __init__(self):
        self.notified: list[dict] = []

    async def notify_case_available(self, case_info: dict) -> bool:
        self.notified.append(case_info)
        return True


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    seed = factory()
    try:
        ensure_fallback_specialty(seed, seed=True)
    finally:
        seed.close()
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def runner():
    return FakeRunner(completions=["Resumen: despido improcedente tras diez años."])


@pytest.fixture
def source_store():
    return FakeStorage("uploads")


@pytest.fixture
def destination_store():
    return FakeStorage("documentos_legales")


@pytest.fixture
def notifier():
    return FakeNotifier()


def make_case(db, **fields: Any) -> models.Case:
    values = {"estado": models.CaseState.borrador, "motivo_consulta": "Despido"}
    values.update(fields)
    case = models.Case(**values)
    db.add(case)
    db.commit()
    db.refresh(case)
    return case
