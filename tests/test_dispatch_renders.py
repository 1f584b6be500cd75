#!/usr/bin/env python3
"""
Tests for the render dispatcher (tools/dispatch_renders.py)

Renderers are faked; no pandoc is needed.

Run: python -m pytest tests/test_dispatch_renders.py -q
"""

import subprocess
import sys
import threading
from pathlib import Path

import pytest

# Ensure tools/ is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "tools"))

import dispatch_renders as dispatch_renders_module
from book_config import BookConfig, PandocConfig
from build_content_graph import ContentGraph, build_content_graph
from dispatch_renders import (
    FORMAT_EXTENSIONS,
    RENDER_ORDER,
    Artifact,
    PandocRenderer,
    RenderCancelled,
    RenderError,
    RendererUnavailable,
    classify_failure,
    dispatch_renders,
    normalize_formats,
)
from parse_frontmatter import Document


# ---------------------------------------------------------------------------
# Test data helpers
# ---------------------------------------------------------------------------

def _make_graph(body_lines=30):
    body = "".join(f"line {n}\n" for n in range(body_lines))
    docs = [
        Document(path="content/chapters/part1/chapter-01.md", title="One", status="draft",
                 part=1, chapter=1, body=body),
        Document(path="content/chapters/part1/chapter-02.md", title="Two", status="planned",
                 part=1, chapter=2, body="stub\n"),
        Document(path="content/appendices/appendix-a.md", title="A", status="draft",
                 appendix_id="A", body=body),
    ]
    return build_content_graph(docs)


class FakeRenderer:
    """Scripted renderer: ``script[fmt]`` lists what each attempt does."""

    def __init__(self, script=None, barrier=None):
        self.script = {fmt: list(steps) for fmt, steps in (script or {}).items()}
        self.barrier = barrier
        self.calls = []
        self._lock = threading.Lock()

    def render(self, graph, fmt, output_dir, cancel_event):
        with self._lock:
            self.calls.append(fmt)
            steps = self.script.get(fmt, [])
            step = steps.pop(0) if steps else "ok"
        if self.barrier is not None:
            self.barrier.wait()
        if isinstance(step, BaseException):
            raise step
        out = Path(output_dir) / f"book{FORMAT_EXTENSIONS[fmt]}"
        out.write_text(f"{fmt} output", encoding="utf-8")
        return Artifact(fmt=fmt, path=str(out))


def _by_fmt(outcomes):
    return {o.fmt: o for o in outcomes}


# ---------------------------------------------------------------------------
# normalize_formats
# ---------------------------------------------------------------------------

class TestNormalizeFormats:
    def test_ordered_and_deduplicated(self):
        assert normalize_formats(["EPUB", "html", "html"]) == ("html", "epub")

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="docx"):
            normalize_formats(["pdf", "docx"])

    def test_empty(self):
        assert normalize_formats([]) == ()


# ---------------------------------------------------------------------------
# dispatch_renders
# ---------------------------------------------------------------------------

class TestDispatchRenders:
    def test_all_formats_succeed(self, tmp_path):
        outcomes = dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path, FakeRenderer())
        assert [o.fmt for o in outcomes] == ["html", "pdf", "epub"]
        assert all(o.ok and o.attempts == 1 for o in outcomes)
        for fmt in RENDER_ORDER:
            assert (tmp_path / fmt / f"book{FORMAT_EXTENSIONS[fmt]}").exists()

    def test_one_format_failing_twice_does_not_affect_others(self, tmp_path):
        renderer = FakeRenderer({
            "pdf": [RenderError("xelatex crashed", transient=True),
                    RenderError("xelatex crashed again", transient=True)],
        })
        outcomes = _by_fmt(dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path, renderer))
        assert outcomes["html"].ok and outcomes["epub"].ok
        assert not outcomes["pdf"].ok
        assert outcomes["pdf"].attempts == 2
        assert outcomes["pdf"].error == "xelatex crashed again"
        assert outcomes["pdf"].attempt_errors == ("xelatex crashed", "xelatex crashed again")
        assert (tmp_path / "html" / "book.html").exists()
        assert (tmp_path / "epub" / "book.epub").exists()
        assert not (tmp_path / "pdf" / "book.pdf").exists()
        assert renderer.calls.count("pdf") == 2

    def test_transient_failure_retried_once(self, tmp_path):
        renderer = FakeRenderer({"epub": [RenderError("timeout", transient=True)]})
        outcome, = dispatch_renders(_make_graph(), ["epub"], tmp_path, renderer)
        assert outcome.ok
        assert outcome.attempts == 2
        assert outcome.attempt_errors == ("timeout",)

    def test_permanent_failure_not_retried(self, tmp_path):
        renderer = FakeRenderer({"html": [RenderError("bad template")]})
        outcome, = dispatch_renders(_make_graph(), ["html"], tmp_path, renderer)
        assert not outcome.ok
        assert outcome.attempts == 1
        assert renderer.calls == ["html"]

    def test_unavailable_renderer_not_retried(self, tmp_path):
        renderer = FakeRenderer({"pdf": [RendererUnavailable("xelatex not found")]})
        outcome, = dispatch_renders(_make_graph(), ["pdf"], tmp_path, renderer)
        assert not outcome.ok
        assert outcome.attempts == 1
        assert "xelatex not found" in outcome.error

    def test_unexpected_exception_is_a_failure(self, tmp_path):
        renderer = FakeRenderer({"html": [ValueError("boom")]})
        outcomes = _by_fmt(dispatch_renders(_make_graph(), ["html", "pdf"], tmp_path, renderer))
        assert not outcomes["html"].ok
        assert outcomes["html"].error == "ValueError: boom"
        assert outcomes["pdf"].ok

    def test_every_format_fails(self, tmp_path):
        renderer = FakeRenderer({fmt: [RenderError("nope")] for fmt in RENDER_ORDER})
        outcomes = dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path, renderer)
        assert len(outcomes) == 3
        assert not any(o.ok for o in outcomes)

    def test_formats_render_concurrently(self, tmp_path):
        barrier = threading.Barrier(3, timeout=10)
        renderer = FakeRenderer(barrier=barrier)
        outcomes = dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path, renderer)
        assert all(o.ok for o in outcomes)

    def test_sequential_runs_in_dispatch_order(self, tmp_path):
        renderer = FakeRenderer()
        dispatch_renders(_make_graph(), ["epub", "pdf", "html"], tmp_path, renderer, max_workers=1)
        assert renderer.calls == ["html", "pdf", "epub"]

    def test_cancelled_before_start(self, tmp_path):
        cancel = threading.Event()
        cancel.set()
        renderer = FakeRenderer()
        outcomes = dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path, renderer, cancel_event=cancel)
        assert renderer.calls == []
        assert all(o.cancelled and not o.ok and o.attempts == 0 for o in outcomes)

    def test_cancelled_during_render(self, tmp_path):
        renderer = FakeRenderer({"pdf": [RenderCancelled()]})
        outcome, = dispatch_renders(_make_graph(), ["pdf"], tmp_path, renderer)
        assert outcome.cancelled
        assert outcome.attempts == 1

    def test_unwritable_output_dir(self, tmp_path):
        blocker = tmp_path / "out"
        blocker.write_text("not a directory", encoding="utf-8")
        renderer = FakeRenderer()
        outcome, = dispatch_renders(_make_graph(), ["html"], blocker, renderer)
        assert not outcome.ok
        assert outcome.attempts == 0
        assert renderer.calls == []

    def test_events_reported(self, tmp_path):
        events = []
        renderer = FakeRenderer({"html": [RenderError("flaky", transient=True)]})
        dispatch_renders(_make_graph(), ["html"], tmp_path, renderer,
                         on_event=lambda fmt, msg, level="INFO": events.append((fmt, level, msg)))
        levels = [level for _, level, _ in events]
        assert "WARN" in levels
        assert events[-1][2].startswith("wrote ")

    def test_nothing_requested(self, tmp_path):
        assert dispatch_renders(_make_graph(), [], tmp_path, FakeRenderer()) == ()


# ---------------------------------------------------------------------------
# pandoc failure classification
# ---------------------------------------------------------------------------

class TestClassifyFailure:
    def test_missing_pdf_engine(self):
        err = classify_failure(47, "xelatex not found. Please select a different --pdf-engine\n")
        assert isinstance(err, RendererUnavailable)
        assert not err.transient
        assert "xelatex not found" in str(err)

    def test_parse_error_is_permanent(self):
        err = classify_failure(64, "")
        assert not isinstance(err, RendererUnavailable)
        assert not err.transient

    def test_killed_is_permanent(self):
        assert not classify_failure(-9, "").transient

    def test_generic_failure_is_transient(self):
        err = classify_failure(1, "Error producing PDF.\n! LaTeX Error\n")
        assert err.transient
        assert err.returncode == 1
        assert "LaTeX Error" in str(err)


# ---------------------------------------------------------------------------
# PandocRenderer
# ---------------------------------------------------------------------------

class FakeProc:
    """Stand-in for subprocess.Popen that writes the ``-o`` target."""

    def __init__(self, cmd, returncode=0, write_output=True, stderr="", hang=False,
                 interrupt=None):
        self.cmd = cmd
        self.interrupt = interrupt
        self._rc = returncode
        self.write_output = write_output
        self.stderr = stderr
        self.hang = hang
        self.returncode = None
        self.terminated = False

    def communicate(self, timeout=None):
        if self.interrupt is not None and not self.terminated:
            if self.write_output:
                Path(self.cmd[-1]).write_text("partial", encoding="utf-8")
            raise self.interrupt()
        if self.hang and not self.terminated:
            if self.write_output:
                Path(self.cmd[-1]).write_text("partial", encoding="utf-8")
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        if self.write_output and not self.terminated:
            Path(self.cmd[-1]).write_text("rendered", encoding="utf-8")
        self.returncode = -15 if self.terminated else self._rc
        return "", self.stderr

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.terminated = True


def _popen_factory(procs, **kwargs):
    def popen(cmd, **_):
        proc = FakeProc(cmd, **kwargs)
        procs.append(proc)
        return proc
    return popen


@pytest.fixture
def tools_on_path(monkeypatch):
    monkeypatch.setattr(dispatch_renders_module.shutil, "which", lambda name: f"/usr/bin/{name}")


def _make_renderer(tmp_path, procs=None, config=None, **popen_kwargs):
    config = config or BookConfig(title="Device Drivers", author="A. Author",
                                  output_basename="drivers", min_render_lines=20)
    popen = _popen_factory(procs if procs is not None else [], **popen_kwargs)
    return PandocRenderer(config, tmp_path, popen=popen, poll_interval=0.001)


class TestPandocCommand:
    def test_short_documents_left_out(self, tmp_path):
        renderer = _make_renderer(tmp_path)
        graph = _make_graph()
        files = renderer.input_files(graph)
        assert [Path(f).name for f in files] == ["chapter-01.md", "appendix-a.md"]
        assert renderer.skipped_documents(graph) == ["content/chapters/part1/chapter-02.md"]

    def test_title_file_first(self, tmp_path):
        config = BookConfig(title_file="content/title.txt")
        renderer = _make_renderer(tmp_path, config=config)
        files = renderer.input_files(_make_graph())
        assert files[0] == str(tmp_path.resolve() / "content/title.txt")

    def test_pdf_options(self, tmp_path):
        renderer = _make_renderer(tmp_path)
        cmd = renderer.build_command(_make_graph(), "pdf", tmp_path / "out.pdf")
        assert cmd[0] == "pandoc"
        assert "--pdf-engine=xelatex" in cmd
        assert cmd[cmd.index("--template") + 1] == "eisvogel"
        assert "documentclass=book" in cmd
        assert "title=Device Drivers" in cmd
        assert "author=A. Author" in cmd
        assert "lang=en" in cmd
        assert cmd[-2:] == ["-o", str(tmp_path / "out.pdf")]

    def test_html_and_epub_options(self, tmp_path):
        renderer = _make_renderer(tmp_path)
        html = renderer.build_command(_make_graph(), "html", "out.html")
        epub = renderer.build_command(_make_graph(), "epub", "out.epub")
        assert "--to=html5" in html and "--standalone" in html
        assert "--epub-chapter-level=1" in epub
        assert "--pdf-engine=xelatex" not in html + epub

    def test_extra_args_before_output(self, tmp_path):
        config = BookConfig(pandoc=PandocConfig(extra_args=("--verbose",)))
        renderer = _make_renderer(tmp_path, config=config)
        cmd = renderer.build_command(_make_graph(), "html", "out.html")
        assert cmd[-3:] == ["--verbose", "-o", "out.html"]

    def test_output_name_carries_locale(self, tmp_path):
        renderer = _make_renderer(tmp_path)
        graph = _make_graph()
        localized = ContentGraph(parts=graph.parts, appendices=graph.appendices, locale="pt_BR")
        assert renderer.output_name(graph, "pdf") == "drivers.pdf"
        assert renderer.output_name(localized, "epub") == "drivers-pt_BR.epub"
        assert "lang=pt-BR" in renderer.build_command(localized, "epub", "x.epub")


class TestPandocRender:
    def test_success_moves_partial_into_place(self, tmp_path, tools_on_path):
        procs = []
        renderer = _make_renderer(tmp_path, procs)
        artifact = renderer.render(_make_graph(), "html", tmp_path)
        assert artifact.path == str(tmp_path.resolve() / "drivers.html")
        assert Path(artifact.path).read_text(encoding="utf-8") == "rendered"
        assert [p.name for p in tmp_path.iterdir()] == ["drivers.html"]
        assert procs[0].cmd[-1].endswith(".drivers.partial.html")

    def test_failure_removes_partial(self, tmp_path, tools_on_path):
        renderer = _make_renderer(tmp_path, returncode=64, stderr="parse error at line 3\n")
        with pytest.raises(RenderError) as exc:
            renderer.render(_make_graph(), "epub", tmp_path)
        assert not exc.value.transient
        assert "parse error" in str(exc.value)
        assert list(tmp_path.iterdir()) == []

    def test_success_without_output(self, tmp_path, tools_on_path):
        renderer = _make_renderer(tmp_path, write_output=False)
        with pytest.raises(RenderError, match="wrote no"):
            renderer.render(_make_graph(), "html", tmp_path)

    def test_cancel_terminates_and_discards(self, tmp_path, tools_on_path):
        procs = []
        renderer = _make_renderer(tmp_path, procs, hang=True)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RenderCancelled):
            renderer.render(_make_graph(), "pdf", tmp_path, cancel)
        assert procs[0].terminated
        assert list(tmp_path.iterdir()) == []

    def test_timeout_is_transient(self, tmp_path, tools_on_path):
        config = BookConfig(render_timeout=0.01)
        procs = []
        renderer = _make_renderer(tmp_path, procs, config=config, hang=True)
        with pytest.raises(RenderError) as exc:
            renderer.render(_make_graph(), "html", tmp_path, threading.Event())
        assert exc.value.transient
        assert procs[0].terminated
        assert list(tmp_path.iterdir()) == []

    def test_keyboard_interrupt_terminates_pandoc(self, tmp_path, tools_on_path):
        procs = []
        renderer = _make_renderer(tmp_path, procs, interrupt=KeyboardInterrupt)
        with pytest.raises(KeyboardInterrupt):
            renderer.render(_make_graph(), "pdf", tmp_path, threading.Event())
        assert procs[0].terminated
        assert list(tmp_path.iterdir()) == []

    def test_keyboard_interrupt_escapes_dispatch(self, tmp_path, tools_on_path):
        procs = []
        renderer = _make_renderer(tmp_path, procs, interrupt=KeyboardInterrupt)
        with pytest.raises(KeyboardInterrupt):
            dispatch_renders(_make_graph(), ["pdf"], tmp_path / "out", renderer)
        assert len(procs) == 1
        assert procs[0].terminated
        assert list((tmp_path / "out" / "pdf").iterdir()) == []

    def test_missing_pandoc(self, tmp_path, monkeypatch):
        monkeypatch.setattr(dispatch_renders_module.shutil, "which", lambda name: None)
        renderer = _make_renderer(tmp_path)
        with pytest.raises(RendererUnavailable, match="pandoc"):
            renderer.render(_make_graph(), "html", tmp_path)

    def test_missing_pdf_engine_only_matters_for_pdf(self, tmp_path, monkeypatch):
        monkeypatch.setattr(dispatch_renders_module.shutil, "which",
                            lambda name: None if name == "xelatex" else f"/usr/bin/{name}")
        renderer = _make_renderer(tmp_path)
        renderer.render(_make_graph(), "html", tmp_path)
        with pytest.raises(RendererUnavailable, match="xelatex"):
            renderer.render(_make_graph(), "pdf", tmp_path)

    def test_popen_file_not_found(self, tmp_path, tools_on_path):
        def popen(cmd, **_):
            raise FileNotFoundError(2, "No such file", cmd[0])
        renderer = PandocRenderer(BookConfig(), tmp_path, popen=popen)
        with pytest.raises(RendererUnavailable):
            renderer.render(_make_graph(), "html", tmp_path)

    def test_dispatch_with_pandoc_renderer(self, tmp_path, tools_on_path):
        renderer = _make_renderer(tmp_path)
        outcomes = dispatch_renders(_make_graph(), RENDER_ORDER, tmp_path / "downloads", renderer)
        assert all(o.ok for o in outcomes)
        assert (tmp_path / "downloads" / "pdf" / "drivers.pdf").exists()
        assert (tmp_path / "downloads" / "epub" / "drivers.epub").exists()
