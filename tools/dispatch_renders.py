"""Render dispatcher: run HTML, PDF and EPUB renders for a content graph.

Each format is rendered independently into its own directory
(``<output_dir>/<fmt>/``), so concurrent renders never write the same file
and one format's failure cannot touch another's output.

Retry policy:
  - RenderError(transient=True): retried once; the second failure is final
  - RenderError(transient=False), RendererUnavailable: not retried
  - any other exception from a renderer: recorded as that format's failure

Every requested format gets a RenderOutcome before dispatch_renders()
returns; outcomes are listed in RENDER_ORDER (html, pdf, epub).

Renderers are plain objects with

    render(graph, fmt, output_dir, cancel_event) -> Artifact

PandocRenderer is the production implementation; tests pass fakes.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from book_config import BookConfig

RENDER_ORDER = ("html", "pdf", "epub")
FORMAT_EXTENSIONS = {"html": ".html", "pdf": ".pdf", "epub": ".epub"}
MAX_ATTEMPTS = 2

# pandoc exit codes (see pandoc's ExitCode docs).
ENVIRONMENT_EXIT_CODES = {
    47: "PDF engine not found",
    97: "data file not found",
    98: "metadata file not found",
    127: "command not found",
}
PERMANENT_EXIT_CODES = {
    5: "template error",
    6: "option error",
    21: "unknown reader",
    22: "unknown writer",
    23: "unsupported extension",
    64: "Markdown parse error",
}


class RenderError(Exception):
    def __init__(self, message: str, transient: bool = False,
                 returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.transient = transient
        self.returncode = returncode
        self.stderr = stderr


class RendererUnavailable(RenderError):
    """Environment problem: missing tool, unwritable output directory."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message, transient=False, returncode=returncode, stderr=stderr)


class RenderCancelled(Exception):
    pass


@dataclass(frozen=True)
class Artifact:
    fmt: str
    path: str


@dataclass(frozen=True)
class RenderOutcome:
    fmt: str
    ok: bool
    attempts: int
    artifact_path: str | None = None
    error: str | None = None
    cancelled: bool = False
    attempt_errors: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "format": self.fmt,
            "ok": self.ok,
            "attempts": self.attempts,
            "artifact": self.artifact_path,
            "error": self.error,
            "cancelled": self.cancelled,
            "attempt_errors": list(self.attempt_errors),
        }


def normalize_formats(formats) -> tuple[str, ...]:
    """Deduplicate and order requested formats by RENDER_ORDER."""
    requested = {f.lower() for f in formats}
    unknown = sorted(requested - set(RENDER_ORDER))
    if unknown:
        raise ValueError(f"Unknown output format(s): {', '.join(unknown)}")
    return tuple(f for f in RENDER_ORDER if f in requested)


def prepare_format_dir(output_dir, fmt: str) -> Path:
    fmt_dir = Path(output_dir) / fmt
    try:
        fmt_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RendererUnavailable(f"cannot create output directory {fmt_dir}: {e}") from e
    if not os.access(fmt_dir, os.W_OK):
        raise RendererUnavailable(f"output directory {fmt_dir} is not writable")
    return fmt_dir


def render_with_retry(renderer, graph, fmt: str, output_dir, cancel_event: threading.Event,
                      on_event=None) -> RenderOutcome:
    """Render one format, retrying a transient failure once."""
    notify = on_event or (lambda fmt, msg, level="INFO": None)
    errors: list[str] = []
    attempts = 0
    try:
        fmt_dir = prepare_format_dir(output_dir, fmt)
    except RendererUnavailable as e:
        return RenderOutcome(fmt, ok=False, attempts=0, error=str(e), attempt_errors=(str(e),))

    while attempts < MAX_ATTEMPTS:
        if cancel_event.is_set():
            return RenderOutcome(fmt, ok=False, attempts=attempts, error="cancelled",
                                 cancelled=True, attempt_errors=tuple(errors))
        attempts += 1
        notify(fmt, f"attempt {attempts}")
        try:
            artifact = renderer.render(graph, fmt, fmt_dir, cancel_event)
        except RenderCancelled:
            return RenderOutcome(fmt, ok=False, attempts=attempts, error="cancelled",
                                 cancelled=True, attempt_errors=tuple(errors))
        except RenderError as e:
            errors.append(str(e))
            if e.transient and attempts < MAX_ATTEMPTS:
                notify(fmt, f"transient failure, retrying: {e}", "WARN")
                continue
            notify(fmt, f"failed: {e}", "ERROR")
            return RenderOutcome(fmt, ok=False, attempts=attempts, error=str(e),
                                 attempt_errors=tuple(errors))
        except Exception as e:
            msg = f"{type(e).__name__}: {e}"
            errors.append(msg)
            notify(fmt, f"renderer crashed: {msg}", "ERROR")
            return RenderOutcome(fmt, ok=False, attempts=attempts, error=msg,
                                 attempt_errors=tuple(errors))
        notify(fmt, f"wrote {artifact.path}")
        return RenderOutcome(fmt, ok=True, attempts=attempts, artifact_path=str(artifact.path),
                             attempt_errors=tuple(errors))

    return RenderOutcome(fmt, ok=False, attempts=attempts, error=errors[-1] if errors else None,
                         attempt_errors=tuple(errors))


def dispatch_renders(graph, formats, output_dir, renderer, max_workers: int | None = None,
                     cancel_event: threading.Event | None = None,
                     on_event=None) -> tuple[RenderOutcome, ...]:
    """Render every requested format and return all outcomes in RENDER_ORDER.

    ``max_workers=1`` renders sequentially in dispatch order; otherwise the
    formats run concurrently. Setting ``cancel_event`` stops in-flight
    renders (their partial output is discarded) and skips pending ones.
    """
    fmts = normalize_formats(formats)
    if not fmts:
        return ()
    if cancel_event is None:
        cancel_event = threading.Event()

    if max_workers == 1 or len(fmts) == 1:
        return tuple(
            render_with_retry(renderer, graph, fmt, output_dir, cancel_event, on_event)
            for fmt in fmts
        )

    workers = min(max_workers or len(fmts), len(fmts))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render") as pool:
        futures = {
            fmt: pool.submit(render_with_retry, renderer, graph, fmt, output_dir,
                             cancel_event, on_event)
            for fmt in fmts
        }
        try:
            return tuple(futures[fmt].result() for fmt in fmts)
        except KeyboardInterrupt:
            cancel_event.set()
            for f in futures.values():
                f.cancel()
            raise


# ---------------------------------------------------------------------------
# Pandoc
# ---------------------------------------------------------------------------

def classify_failure(returncode: int, stderr: str) -> RenderError:
    tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
    if returncode in ENVIRONMENT_EXIT_CODES:
        return RendererUnavailable(
            f"pandoc exited {returncode} ({ENVIRONMENT_EXIT_CODES[returncode]}): {tail}",
            returncode=returncode, stderr=stderr,
        )
    if returncode < 0:
        return RenderError(f"pandoc killed by signal {-returncode}",
                           transient=False, returncode=returncode, stderr=stderr)
    if returncode in PERMANENT_EXIT_CODES:
        return RenderError(
            f"pandoc exited {returncode} ({PERMANENT_EXIT_CODES[returncode]}): {tail}",
            transient=False, returncode=returncode, stderr=stderr,
        )
    return RenderError(f"pandoc exited {returncode}: {tail}",
                       transient=True, returncode=returncode, stderr=stderr)


class PandocRenderer:
    """Render a ContentGraph by invoking pandoc once per format."""

    def __init__(self, config: BookConfig, book_root, popen=subprocess.Popen,
                 poll_interval: float = 0.2):
        self.config = config
        self.book_root = Path(book_root).resolve()
        self.popen = popen
        self.poll_interval = poll_interval

    def output_name(self, graph, fmt: str) -> str:
        stem = self.config.output_basename
        if graph.locale != "en":
            stem = f"{stem}-{graph.locale}"
        return stem + FORMAT_EXTENSIONS[fmt]

    def input_files(self, graph) -> list[str]:
        """Title page (if configured) then every document long enough to render."""
        files = []
        if self.config.title_file:
            files.append(str(self.book_root / self.config.title_file))
        for d in graph.documents():
            if d.body_line_count >= self.config.min_render_lines:
                files.append(str(self.book_root / d.path))
        return files

    def skipped_documents(self, graph) -> list[str]:
        return [d.path for d in graph.documents() if d.body_line_count < self.config.min_render_lines]

    def build_command(self, graph, fmt: str, output_path) -> list[str]:
        cfg = self.config
        pc = cfg.pandoc
        cmd = [pc.executable, *self.input_files(graph)]
        if cfg.metadata_file:
            cmd.append(f"--metadata-file={self.book_root / cfg.metadata_file}")
        cmd += [
            "--toc",
            f"--toc-depth={pc.toc_depth}",
            "--number-sections",
            f"--highlight-style={pc.highlight_style}",
            "--metadata", f"title={cfg.title}",
        ]
        if cfg.author:
            cmd += ["--metadata", f"author={cfg.author}"]
        if cfg.date:
            cmd += ["--metadata", f"date={cfg.date}"]
        cmd += ["--metadata", f"lang={graph.locale.replace('_', '-')}"]

        if fmt == "pdf":
            cmd += ["--from", "markdown+fenced_code_blocks"]
            if pc.template:
                cmd += ["--template", pc.template]
            cmd += [
                f"--pdf-engine={pc.pdf_engine}",
                "--variable", "titlepage=true",
                "--variable", "toc-own-page=true",
                "--variable", "papersize=a4",
                "--variable", "documentclass=book",
                "--variable", "book=true",
                "--variable", "linestretch=1.15",
                "--variable", "geometry:inner=2cm,outer=2cm,top=2.5cm,bottom=2.5cm",
            ]
        elif fmt == "epub":
            cmd += ["--epub-chapter-level=1"]
        elif fmt == "html":
            cmd += ["--to=html5", "--standalone", "--embed-resources"]
        else:
            raise ValueError(f"Unknown output format: {fmt}")

        cmd += list(pc.extra_args)
        cmd += ["-o", str(output_path)]
        return cmd

    def check_environment(self, fmt: str):
        pc = self.config.pandoc
        if shutil.which(pc.executable) is None:
            raise RendererUnavailable(f"'{pc.executable}' not found on PATH")
        if fmt == "pdf" and shutil.which(pc.pdf_engine) is None:
            raise RendererUnavailable(f"PDF engine '{pc.pdf_engine}' not found on PATH")
        for label, rel in (("title file", self.config.title_file),
                           ("metadata file", self.config.metadata_file)):
            if rel and not (self.book_root / rel).exists():
                raise RendererUnavailable(f"{label} not found: {self.book_root / rel}")

    def render(self, graph, fmt: str, output_dir, cancel_event=None) -> Artifact:
        self.check_environment(fmt)
        final = Path(output_dir).resolve() / self.output_name(graph, fmt)
        partial = final.with_name(f".{final.stem}.partial{final.suffix}")
        cmd = self.build_command(graph, fmt, partial)

        succeeded = False
        try:
            try:
                proc = self.popen(cmd, cwd=str(self.book_root), stdout=subprocess.PIPE,
                                  stderr=subprocess.PIPE, text=True, encoding="utf-8")
            except FileNotFoundError as e:
                raise RendererUnavailable(f"'{cmd[0]}' not found: {e}") from e

            stderr = self._wait(proc, cancel_event)
            if proc.returncode != 0:
                raise classify_failure(proc.returncode, stderr)
            if not partial.exists():
                raise RenderError(f"pandoc reported success but wrote no {fmt} output")
            os.replace(partial, final)
            succeeded = True
            return Artifact(fmt=fmt, path=str(final))
        finally:
            if not succeeded and partial.exists():
                partial.unlink()

    def _wait(self, proc, cancel_event) -> str:
        """Wait for ``proc``; terminate it on cancellation or timeout."""
        deadline = time.monotonic() + self.config.render_timeout
        while True:
            try:
                _, stderr = proc.communicate(timeout=self.poll_interval)
                return stderr or ""
            except subprocess.TimeoutExpired:
                pass
            except BaseException:
                self._terminate(proc)
                raise
            if cancel_event is not None and cancel_event.is_set():
                self._terminate(proc)
                raise RenderCancelled()
            if time.monotonic() >= deadline:
                self._terminate(proc)
                raise RenderError(
                    f"pandoc timed out after {self.config.render_timeout:.0f}s", transient=True,
                )

    @staticmethod
    def _terminate(proc):
        proc.terminate()
        try:
            proc.communicate(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
