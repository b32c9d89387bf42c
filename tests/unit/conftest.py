"""Unit test conftest: scripted backends, fake auth, generated PDFs.

No AI CLI is ever launched from these fixtures; the invoker tests spawn the
current Python interpreter instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fakes import ScriptedInvoker, StaticChecker

from filler_service.orchestration.cache import ExtractionCache
from filler_service.orchestration.rate_limiter import RateLimiter
from filler_service.orchestration.retry import FallbackRegistry, RetryController
from filler_service.orchestration.selector import ProviderSelector
from filler_service.pipeline import Orchestrator
from filler_service.providers.base import BackendSettings
from filler_service.providers.claude import ClaudeBackend
from filler_service.providers.codex import CodexBackend
from filler_service.providers.gemini import GeminiBackend
from filler_service.types import ProviderId, RateLimits


@pytest.fixture
def settings_factory(tmp_path: Path):
    def _make(name: str, per_minute: int = 100, per_day: int = 1000) -> BackendSettings:
        return BackendSettings(home=str(tmp_path / "homes" / name), limits=RateLimits(per_minute, per_day))

    return _make


@pytest.fixture
def gemini(settings_factory) -> GeminiBackend:
    return GeminiBackend(settings_factory("gemini"))


@pytest.fixture
def claude(settings_factory) -> ClaudeBackend:
    return ClaudeBackend(settings_factory("claude"))


@pytest.fixture
def codex(settings_factory) -> CodexBackend:
    return CodexBackend(settings_factory("codex"))


@pytest.fixture
def make_controller():
    def _make(
        invoker: ScriptedInvoker,
        *,
        limiters: dict[ProviderId, RateLimiter] | None = None,
        fallback: FallbackRegistry | None = None,
        **kwargs: Any,
    ) -> RetryController:
        return RetryController(
            invoker,  # type: ignore[arg-type]
            limiters or {},
            fallback or FallbackRegistry(),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_orchestrator(gemini, claude, codex, make_controller):
    """Orchestrator wired to scripted invocations and static auth."""

    def _make(
        invoker: ScriptedInvoker,
        *,
        authenticated: set[ProviderId] | None = None,
        fallback: FallbackRegistry | None = None,
    ) -> Orchestrator:
        authed = {ProviderId.GEMINI} if authenticated is None else authenticated
        backends = {ProviderId.CLAUDE: claude, ProviderId.GEMINI: gemini, ProviderId.CODEX: codex}
        checkers = {pid: StaticChecker(pid in authed) for pid in backends}
        limiters = {pid: RateLimiter(b.settings.limits) for pid, b in backends.items()}
        return Orchestrator(
            backends=backends,
            selector=ProviderSelector(checkers),
            controller=make_controller(invoker, limiters=limiters, fallback=fallback),
            cache=ExtractionCache(),
            limiters=limiters,
        )

    return _make


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    """A one-page PDF on disk with a little text (fpdf2)."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=12)
    pdf.cell(text="Applicant name: Ann Example")
    pdf.ln()
    pdf.cell(text="Date of birth: 1990-04-01")
    path = tmp_path / "a.pdf"
    path.write_bytes(bytes(pdf.output()))
    return path


@pytest.fixture
def form_pdf(tmp_path: Path) -> Path:
    """A one-page AcroForm with a text field, a checkbox and a dropdown (pypdf)."""
    from pypdf import PdfWriter
    from pypdf.generic import (
        ArrayObject,
        DecodedStreamObject,
        DictionaryObject,
        FloatObject,
        NameObject,
        NumberObject,
        TextStringObject,
    )

    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)

    font = DictionaryObject({
        NameObject("/Type"): NameObject("/Font"),
        NameObject("/Subtype"): NameObject("/Type1"),
        NameObject("/BaseFont"): NameObject("/Helvetica"),
    })
    font_ref = writer._add_object(font)
    blank = DecodedStreamObject()
    blank.set_data(b"")
    blank_ref = writer._add_object(blank)

    def widget(name: str, ft: str, y: float, extra: dict[str, Any]) -> Any:
        annot = DictionaryObject({
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/FT"): NameObject(ft),
            NameObject("/T"): TextStringObject(name),
            NameObject("/Rect"): ArrayObject([FloatObject(50), FloatObject(y), FloatObject(250), FloatObject(y + 20)]),
            NameObject("/F"): NumberObject(4),
            NameObject("/DA"): TextStringObject("/Helv 0 Tf 0 g"),
        })
        for k, v in extra.items():
            annot[NameObject(k)] = v
        return writer.add_annotation(0, annot).indirect_reference

    name_ref = widget("applicant_name", "/Tx", 700, {})
    agree_ref = widget(
        "agree",
        "/Btn",
        660,
        {
            "/V": NameObject("/Off"),
            "/AS": NameObject("/Off"),
            "/AP": DictionaryObject({
                NameObject("/N"): DictionaryObject({
                    NameObject("/Yes"): blank_ref,
                    NameObject("/Off"): blank_ref,
                })
            }),
        },
    )
    state_ref = widget(
        "state",
        "/Ch",
        620,
        {
            "/Ff": NumberObject(1 << 17),
            "/Opt": ArrayObject([TextStringObject("CA"), TextStringObject("NY")]),
        },
    )

    writer._root_object[NameObject("/AcroForm")] = DictionaryObject({
        NameObject("/Fields"): ArrayObject([name_ref, agree_ref, state_ref]),
        NameObject("/DA"): TextStringObject("/Helv 0 Tf 0 g"),
        NameObject("/DR"): DictionaryObject({
            NameObject("/Font"): DictionaryObject({NameObject("/Helv"): font_ref}),
        }),
    })

    path = tmp_path / "form.pdf"
    with open(path, "wb") as fh:
        writer.write(fh)
    return path
