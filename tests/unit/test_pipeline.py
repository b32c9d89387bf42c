"""Unit tests for the orchestrator facade, end to end with scripted backends."""

from __future__ import annotations

import asyncio
import os
from unittest.mock import patch

import pytest
from fakes import ScriptedInvoker, failed, ok

from filler_service.documents import TextExtract
from filler_service.errors import AuthRequired, DocumentNotFound, MalformedResponse, SubprocessFailed
from filler_service.orchestration.retry import FallbackRegistry
from filler_service.types import ExtractionKey, FieldDescriptor, FieldKind, ProviderId

REFUSAL = "I cannot directly read PDF files."


@pytest.fixture
def a_pdf(tmp_path):
    path = tmp_path / "a.pdf"
    path.write_bytes(b"%PDF-1.4\n%%EOF\n")
    return path


class TestExtract:
    async def test_concurrent_callers_refusal_then_success(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker(
            [ok(REFUSAL), ok('```json\n{"name": "Ann", "agree": True}\n```')], delay_s=0.05
        )
        orchestrator = make_orchestrator(invoker)

        first, second = await asyncio.gather(
            orchestrator.extract(str(a_pdf)), orchestrator.extract(str(a_pdf))
        )

        assert len(invoker.calls) == 2
        assert first.document == second.document == {"name": "Ann", "agree": True}
        assert {first.source, second.source} == {"fresh", "inflight"}
        assert first.provider == second.provider == "gemini"

        third = await orchestrator.extract(str(a_pdf))
        assert third.source == "cache"
        assert len(invoker.calls) == 2

    async def test_failure_not_cached_and_shared(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([failed("boom"), ok('{"a": 1}')], delay_s=0.05)
        orchestrator = make_orchestrator(invoker)

        results = await asyncio.gather(
            orchestrator.extract(str(a_pdf)), orchestrator.extract(str(a_pdf)), return_exceptions=True
        )
        assert all(isinstance(r, SubprocessFailed) for r in results)
        assert len(invoker.calls) == 1

        retry = await orchestrator.extract(str(a_pdf))
        assert retry.source == "fresh"
        assert retry.document == {"a": 1}

    async def test_malformed_output_is_not_retried(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([ok("Here is the data: name is Ann.")])
        with pytest.raises(MalformedResponse):
            await make_orchestrator(invoker).extract(str(a_pdf))
        assert len(invoker.calls) == 1

    async def test_force_refresh(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([ok('{"v": 1}'), ok('{"v": 2}')])
        orchestrator = make_orchestrator(invoker)
        await orchestrator.extract(str(a_pdf))
        refreshed = await orchestrator.extract(str(a_pdf), force_refresh=True)
        assert refreshed.document == {"v": 2}
        assert refreshed.source == "fresh"

    async def test_placeholders_are_cleaned(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([ok('{"name": "Ann", "box": "X", "empty": ""}')])
        result = await make_orchestrator(invoker).extract(str(a_pdf))
        assert result.document == {"name": "Ann"}

    async def test_prompt_uses_absolute_path_and_template(self, a_pdf, make_orchestrator, monkeypatch):
        monkeypatch.chdir(a_pdf.parent)
        invoker = ScriptedInvoker([ok("{}")])
        await make_orchestrator(invoker).extract("a.pdf", {"applicant_name": ""})
        prompt = invoker.prompts()[0]
        assert os.path.join(os.getcwd(), "a.pdf") in prompt
        assert "applicant_name" in prompt
        assert invoker.calls[0].cwd == os.getcwd()

    async def test_missing_file(self, tmp_path, make_orchestrator):
        invoker = ScriptedInvoker([])
        with pytest.raises(DocumentNotFound):
            await make_orchestrator(invoker).extract(str(tmp_path / "nope.pdf"))
        assert invoker.calls == []

    async def test_no_backend_authenticated(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([])
        orchestrator = make_orchestrator(invoker, authenticated=set())
        with pytest.raises(AuthRequired):
            await orchestrator.extract(str(a_pdf))
        assert invoker.calls == []
        assert orchestrator.cache.peek(ExtractionKey.for_file(str(a_pdf))) is None

    async def test_highest_priority_backend_is_used(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([ok('{"result": "{\\"a\\": 1}"}')])
        orchestrator = make_orchestrator(invoker, authenticated={ProviderId.CLAUDE, ProviderId.GEMINI})
        result = await orchestrator.extract(str(a_pdf))
        assert result.provider == "claude"
        assert result.document == {"a": 1}

    async def test_codex_gets_extracted_text(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker([ok('{"name": "Ann"}')])
        orchestrator = make_orchestrator(invoker, authenticated={ProviderId.CODEX})
        with patch(
            "filler_service.pipeline.documents.extract_text",
            return_value=TextExtract(text="Applicant name: Ann", pages=1),
        ):
            result = await orchestrator.extract(str(a_pdf))
        assert result.provider == "codex"
        assert "Applicant name: Ann" in invoker.prompts()[0]


class TestFillAndValidate:
    async def test_generate_fill_instructions(self, a_pdf, make_orchestrator, sample_document):
        invoker = ScriptedInvoker(
            [ok('[{"field": "applicant_name", "value": "Ann", "type": "text"}, '
                '{"field": "agree", "value": true, "type": "checkbox"}]')]
        )
        fields = [FieldDescriptor(name="applicant_name", type="text", value=None)]
        with patch("filler_service.pipeline.documents.read_form_fields", return_value=fields):
            instructions = await make_orchestrator(invoker).generate_fill_instructions(
                str(a_pdf), sample_document
            )

        assert [(i.field, i.kind) for i in instructions] == [
            ("applicant_name", FieldKind.TEXT),
            ("agree", FieldKind.CHECKBOX),
        ]
        prompt = invoker.prompts()[0]
        assert "applicant_name" in prompt
        assert '"name": "Ann Example"' in prompt

    async def test_validate(self, a_pdf, make_orchestrator):
        invoker = ScriptedInvoker(
            [ok('{"isValid": false, "missingFields": ["ssn"], "filledFields": ["name"], '
                '"allFields": ["name", "ssn"], "summary": "SSN missing"}')]
        )
        report = await make_orchestrator(invoker).validate(str(a_pdf), ["name", "ssn"])
        assert not report.is_valid
        assert report.missing_fields == ["ssn"]
        assert '"ssn"' in invoker.prompts()[0]

    async def test_fill_generates_instructions_then_writes(self, a_pdf, tmp_path, make_orchestrator):
        invoker = ScriptedInvoker([ok('[{"field": "applicant_name", "value": "Ann"}]')])
        orchestrator = make_orchestrator(invoker)
        with (
            patch("filler_service.pipeline.documents.read_form_fields", return_value=[]),
            patch("filler_service.pipeline.documents.fill_form") as fill_form,
        ):
            await orchestrator.fill(str(a_pdf), str(tmp_path / "out.pdf"), data={"name": "Ann"})

        path, instructions, out_path, password = fill_form.call_args.args
        assert path == str(a_pdf)
        assert [i.field for i in instructions] == ["applicant_name"]
        assert out_path == str(tmp_path / "out.pdf")
        assert password is None


class TestStatus:
    async def test_status_reports_providers_fallback_and_budget(self, a_pdf, make_orchestrator):
        fallback = FallbackRegistry()
        invoker = ScriptedInvoker([failed("429 quota"), ok("{}")])
        orchestrator = make_orchestrator(invoker, fallback=fallback)
        await orchestrator.extract(str(a_pdf))

        status = await orchestrator.status()
        assert status["selected"] == "gemini"
        assert status["authenticated"] is True
        gemini = status["providers"]["gemini"]
        assert gemini["fallback_active"] is True
        assert gemini["rate"]["per_minute_used"] == 2
        assert status["providers"]["claude"]["authenticated"] is False
        assert status["cache"] == {"entries": 1, "inflight": 0}
