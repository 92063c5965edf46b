import asyncio

import pytest

from conftest import PROPOSAL_ID, FakeRunner
from klamai.services.proposal_service import generate_proposal
from klamai.utils.exceptions import AssistantRunError, LlmJsonParseError


def test_fenced_proposal_is_parsed():
    runner = FakeRunner()
    proposal = asyncio.run(generate_proposal("Despido improcedente.", "Juan", runner=runner))

    assert proposal["titulo_personalizado"] == "Juan, vamos a por tu indemnización"
    assert proposal["etiqueta_caso"] == "Despido"
    assert runner.run_calls[0][0] == PROPOSAL_ID


def test_subtitle_is_optional():
    runner = FakeRunner(answers={PROPOSAL_ID: '{"titulo_personalizado": "Hola", "etiqueta_caso": "Herencia"}'})
    proposal = asyncio.run(generate_proposal("Herencia.", None, runner=runner))
    assert proposal == {"titulo_personalizado": "Hola", "subtitulo_refuerzo": None, "etiqueta_caso": "Herencia"}


@pytest.mark.parametrize(
    "answer",
    [
        "{}",
        '{"subtitulo_refuerzo": "Solo subtítulo"}',
        '{"titulo_personalizado": "Hola", "etiqueta_caso": "   "}',
    ],
)
def test_proposal_without_title_or_label_is_rejected(answer):
    runner = FakeRunner(answers={PROPOSAL_ID: answer})
    with pytest.raises(LlmJsonParseError):
        asyncio.run(generate_proposal("Despido.", "Juan", runner=runner))


def test_empty_answer_is_an_assistant_error():
    runner = FakeRunner(answers={PROPOSAL_ID: "  "})
    with pytest.raises(AssistantRunError):
        asyncio.run(generate_proposal("Despido.", "Juan", runner=runner))
