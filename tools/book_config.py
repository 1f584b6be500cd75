"""Load ``book.yaml``, the per-book build configuration.

Example::

    title: FreeBSD Device Drivers
    author: Edson Brandi
    date: "DRAFT Version 1.0"
    output_basename: freebsd-device-drivers
    numbering: continuous
    pandoc:
      template: eisvogel
      pdf_engine: xelatex
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

CONFIG_FILENAME = "book.yaml"
NUMBERING_MODES = ("per-part", "continuous")


@dataclass(frozen=True)
class PandocConfig:
    executable: str = "pandoc"
    template: str | None = "eisvogel"
    pdf_engine: str = "xelatex"
    highlight_style: str = "tango"
    toc_depth: int = 2
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class BookConfig:
    title: str = "Untitled Book"
    author: str = ""
    date: str = ""
    output_basename: str = "book"
    content_dir: str = "content"
    translations_dir: str = "translations"
    output_dir: str = "public/downloads"
    title_file: str | None = None
    metadata_file: str | None = None
    numbering: str = "per-part"
    min_render_lines: int = 20
    render_timeout: float = 900.0
    pandoc: PandocConfig = field(default_factory=PandocConfig)


class ConfigError(ValueError):
    pass


def _check_keys(data: dict, cls, where: str):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"{where}: unknown key(s): {', '.join(unknown)}")


def config_from_dict(data: dict, where: str = CONFIG_FILENAME) -> BookConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: top level must be a mapping")
    data = dict(data)
    _check_keys(data, BookConfig, where)

    pandoc_raw = data.pop("pandoc", None) or {}
    if not isinstance(pandoc_raw, dict):
        raise ConfigError(f"{where}: 'pandoc' must be a mapping")
    _check_keys(pandoc_raw, PandocConfig, f"{where} [pandoc]")
    pandoc_raw = dict(pandoc_raw)
    if "extra_args" in pandoc_raw:
        extra = pandoc_raw["extra_args"]
        if isinstance(extra, str) or not isinstance(extra, list):
            raise ConfigError(f"{where}: pandoc.extra_args must be a list")
        pandoc_raw["extra_args"] = tuple(str(a) for a in extra)
    if "toc_depth" in pandoc_raw:
        pandoc_raw["toc_depth"] = _as_int(pandoc_raw["toc_depth"], "pandoc.toc_depth", where)

    if "date" in data and data["date"] is not None:
        data["date"] = str(data["date"])
    if data.get("numbering", "per-part") not in NUMBERING_MODES:
        raise ConfigError(
            f"{where}: numbering must be one of {', '.join(NUMBERING_MODES)}, "
            f"got {data['numbering']!r}"
        )
    if "min_render_lines" in data:
        data["min_render_lines"] = _as_int(data["min_render_lines"], "min_render_lines", where)
    if "render_timeout" in data:
        try:
            data["render_timeout"] = float(data["render_timeout"])
        except (TypeError, ValueError):
            raise ConfigError(f"{where}: render_timeout must be a number") from None
        if data["render_timeout"] <= 0:
            raise ConfigError(f"{where}: render_timeout must be positive")

    return BookConfig(pandoc=PandocConfig(**pandoc_raw), **data)


def _as_int(value, name: str, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}: {name} must be an integer, got {value!r}")
    return value


def load_config(book_root, path=None) -> BookConfig:
    """Load config from ``path`` or ``<book_root>/book.yaml``; defaults if absent."""
    if path is None:
        candidate = Path(book_root) / CONFIG_FILENAME
        if not candidate.exists():
            return BookConfig()
        path = candidate
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load {path}: {e}") from e
    if data is None:
        return BookConfig()
    return config_from_dict(data, where=str(path))
