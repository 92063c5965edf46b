import asyncio

import pytest

from conftest import CLASSIFIER_ID, FakeRunner, FakeStorage, GUIDE_ID, PROPOSAL_ID, make_case
from klamai.db.models import Case, CaseState, LeadTier, ProcessingStatus, Specialty
from klamai.services.attachment_transfer import AttachmentTransferService
from klamai.services.case_finalizer import ERROR_SUMMARY_PREFIX, guide_path
from klamai.services.case_pipeline import CasePipeline, ProcessingJob
from klamai.utils.exceptions import AssistantRunError

SUMMARY = "Cliente despedido tras diez años; posible despido improcedente."


@pytest.fixture
def pipeline_factory(session_factory, source_store, destination_store, notifier):
    def build(runner):
        return CasePipeline(
            session_factory=session_factory,
            runner=runner,
            transfer_service=AttachmentTransferService(source_store, destination_store),
            storage=destination_store,
            notifier=notifier,
        )
    return build


def _dispatch(db, case, **context) -> ProcessingJob:
    case.version_procesamiento = (case.version_procesamiento or 0) + 1
    case.estado_procesamiento = ProcessingStatus.pending
    db.commit()
    return ProcessingJob(caso_id=str(case.id), version=case.version_procesamiento, **context)


def _reload(session_factory, case_id) -> Case:
    session = session_factory()
    try:
        case = session.get(Case, case_id)
        session.expunge(case)
        return case
    finally:
        session.close()


def _specialty_id(db, name):
    return db.query(Specialty.id).filter(Specialty.nombre == name).scalar()


def test_successful_run_publishes_case(db, session_factory, pipeline_factory, destination_store, notifier):
    case = make_case(db)
    job = _dispatch(db, case, resumen_caso=SUMMARY, transcripcion_chat={"mensajes": ["hola"]})

    published = asyncio.run(pipeline_factory(FakeRunner()).process(job))

    assert published is True
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.disponible
    assert stored.estado_procesamiento is ProcessingStatus.completed
    assert stored.resumen_caso == SUMMARY
    assert stored.guia_abogado.startswith("Guía")
    assert stored.especialidad_id == _specialty_id(db, "Derecho Laboral")
    assert stored.tipo_lead is LeadTier.premium
    assert stored.valor_estimado == "1.500€ - 3.000€"
    assert stored.motivo_consulta == "Reclamación por despido improcedente"
    assert stored.transcripcion_chat == {"mensajes": ["hola"]}
    assert stored.documentos_adjuntos is None
    assert destination_store.objects[guide_path(str(case.id))][0].decode("utf-8") == stored.guia_abogado
    assert [n["id"] for n in notifier.notified] == [str(case.id)]


def test_manual_flow_generates_summary_and_proposal(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(completions=["  Resumen generado del caso.  "])
    job = _dispatch(
        db,
        case,
        case_text="Juan Pérez... despido improcedente tras diez años en la empresa.",
        extracted={"cliente": {"nombre": "Juan"}, "consulta": {}},
        include_proposal=True,
        client_name="Juan",
    )

    assert asyncio.run(pipeline_factory(runner).process(job)) is True

    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.disponible
    assert stored.resumen_caso == "Resumen generado del caso."
    assert stored.propuesta_estructurada["etiqueta_caso"] == "Despido"
    assert stored.guia_abogado is not None
    assert stored.especialidad_id is not None
    assert {assistant for assistant, _ in runner.run_calls} == {GUIDE_ID, CLASSIFIER_ID, PROPOSAL_ID}
    # Every assistant works from the generated summary
    assert all("Resumen generado del caso." in content for _, content in runner.run_calls)


def test_classification_failure_reverts_to_draft(db, session_factory, pipeline_factory, destination_store, notifier):
    case = make_case(db)
    runner = FakeRunner(answers={CLASSIFIER_ID: AssistantRunError("run expired")})
    job = _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(runner).process(job)) is False

    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.borrador
    assert stored.estado_procesamiento is ProcessingStatus.failed
    assert stored.resumen_caso.startswith(ERROR_SUMMARY_PREFIX)
    assert "run expired" in stored.resumen_caso
    assert stored.especialidad_id is None
    assert stored.tipo_lead is None
    assert stored.valor_estimado is None
    assert stored.guia_abogado is None
    assert guide_path(str(case.id)) not in destination_store.objects
    assert notifier.notified == []


def test_unparsable_classification_is_a_required_failure(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(answers={CLASSIFIER_ID: '{"especialidad_nombre": "Derecho Civil", "tipo_lead": "oro"}'})
    job = _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(runner).process(job)) is False
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.borrador
    assert stored.especialidad_id is None


def test_guide_failure_reverts_to_draft(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(answers={GUIDE_ID: ""})
    job = _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(runner).process(job)) is False
    assert _reload(session_factory, case.id).estado is CaseState.borrador


def test_summary_failure_reverts_before_any_assistant_runs(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(completions=[RuntimeError("openai down")])
    job = _dispatch(db, case, case_text="texto del caso", include_proposal=True)

    assert asyncio.run(pipeline_factory(runner).process(job)) is False
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.borrador
    assert "openai down" in stored.resumen_caso
    assert runner.run_calls == []


def test_proposal_failure_is_tolerated(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(answers={PROPOSAL_ID: "sin formato"})
    job = _dispatch(db, case, resumen_caso=SUMMARY, include_proposal=True, client_name="Juan")

    assert asyncio.run(pipeline_factory(runner).process(job)) is True
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.disponible
    assert stored.propuesta_estructurada is None


def test_missing_attachment_is_skipped(db, session_factory, pipeline_factory, source_store):
    source_store.objects["chat/carta.pdf"] = (b"%PDF carta", "application/pdf")
    case = make_case(db)
    job = _dispatch(
        db,
        case,
        resumen_caso=SUMMARY,
        files=[
            "https://minio.example.com/uploads/chat/carta.pdf",
            "https://minio.example.com/uploads/chat/revocado.pdf",
        ],
    )

    assert asyncio.run(pipeline_factory(FakeRunner()).process(job)) is True
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.disponible
    assert stored.documentos_adjuntos == [f"casos/{case.id}/documentos_cliente/carta.pdf"]


def test_unknown_specialty_gets_fallback(db, session_factory, pipeline_factory):
    case = make_case(db)
    runner = FakeRunner(
        answers={CLASSIFIER_ID: '{"especialidad_nombre": "Derecho Lunar", "tipo_lead": "estandar"}'}
    )
    job = _dispatch(db, case, resumen_caso=SUMMARY, motivo_consulta="Motivo inicial")

    assert asyncio.run(pipeline_factory(runner).process(job)) is True
    stored = _reload(session_factory, case.id)
    assert stored.especialidad_id == _specialty_id(db, "Consulta General")
    assert stored.motivo_consulta == "Motivo inicial"


def test_rerun_overwrites_instead_of_accumulating(db, session_factory, pipeline_factory, source_store, destination_store):
    source_store.objects["a.pdf"] = (b"a", "application/pdf")
    case = make_case(db)
    files = ["https://minio.example.com/uploads/a.pdf"]

    for _ in range(2):
        job = _dispatch(db, case, resumen_caso=SUMMARY, files=files)
        assert asyncio.run(pipeline_factory(FakeRunner()).process(job)) is True
        db.refresh(case)

    stored = _reload(session_factory, case.id)
    assert stored.documentos_adjuntos == [f"casos/{case.id}/documentos_cliente/a.pdf"]
    assert stored.version_procesamiento == 2
    assert sorted(destination_store.objects) == sorted(
        [guide_path(str(case.id)), f"casos/{case.id}/documentos_cliente/a.pdf"]
    )


def test_superseded_run_writes_nothing(db, session_factory, pipeline_factory, destination_store, notifier):
    case = make_case(db)
    stale = _dispatch(db, case, resumen_caso=SUMMARY)
    _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(FakeRunner()).process(stale)) is False
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.borrador
    assert stored.estado_procesamiento is ProcessingStatus.pending
    assert stored.resumen_caso is None
    assert destination_store.objects == {}
    assert notifier.notified == []


def test_run_superseded_while_generating_is_dropped(db, session_factory, pipeline_factory, destination_store):
    case = make_case(db)
    case_id = case.id
    stale = _dispatch(db, case, resumen_caso=SUMMARY)

    def bump_version(content):
        session = session_factory()
        try:
            row = session.get(Case, case_id)
            row.version_procesamiento += 1
            session.commit()
        finally:
            session.close()
        return "Guía escrita mientras llegaba otra petición."

    runner = FakeRunner(answers={GUIDE_ID: bump_version})
    assert asyncio.run(pipeline_factory(runner).process(stale)) is False
    stored = _reload(session_factory, case_id)
    assert stored.estado is CaseState.borrador
    assert stored.guia_abogado is None
    assert destination_store.objects == {}


def test_assigned_case_keeps_its_state_on_reprocessing(db, session_factory, pipeline_factory, notifier):
    case = make_case(db, estado=CaseState.asignado)
    job = _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(FakeRunner()).process(job)) is True
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.asignado
    assert stored.estado_procesamiento is ProcessingStatus.completed
    assert notifier.notified == []


def test_assigned_case_keeps_its_analysis_when_reprocessing_fails(db, session_factory, pipeline_factory, notifier):
    case = make_case(
        db,
        estado=CaseState.asignado,
        resumen_caso="Resumen anterior",
        guia_abogado="Guía anterior",
        tipo_lead=LeadTier.estandar,
        especialidad_id=_specialty_id(db, "Derecho Laboral"),
    )
    runner = FakeRunner(answers={CLASSIFIER_ID: AssistantRunError("run expired")})
    job = _dispatch(db, case, resumen_caso=SUMMARY)

    assert asyncio.run(pipeline_factory(runner).process(job)) is False
    stored = _reload(session_factory, case.id)
    assert stored.estado is CaseState.asignado
    assert stored.estado_procesamiento is ProcessingStatus.failed
    assert stored.resumen_caso == "Resumen anterior"
    assert stored.guia_abogado == "Guía anterior"
    assert stored.tipo_lead is LeadTier.estandar
    assert stored.especialidad_id == _specialty_id(db, "Derecho Laboral")
    assert notifier.notified == []
