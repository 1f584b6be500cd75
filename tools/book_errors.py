"""Structural errors raised while validating book sources.

Any of these aborts a build before a renderer is invoked.
"""

from __future__ import annotations


class StructuralError(Exception):
    """Base class for fatal document-level errors."""

    def __init__(self, message: str, paths: tuple[str, ...] = ()):
        super().__init__(message)
        self.paths = tuple(paths)


class MalformedFrontmatter(StructuralError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: malformed frontmatter: {reason}", (path,))
        self.reason = reason


class MissingRequiredField(StructuralError):
    def __init__(self, path: str, field: str):
        super().__init__(f"{path}: missing required field '{field}'", (path,))
        self.field = field


class DuplicateChapterNumber(StructuralError):
    def __init__(self, part: int, chapter: int, paths):
        paths = tuple(sorted(paths))
        super().__init__(
            f"Part {part}, chapter {chapter} is claimed by more than one file: "
            + ", ".join(paths),
            paths,
        )
        self.part = part
        self.chapter = chapter


class DuplicateAppendix(StructuralError):
    def __init__(self, appendix_id: str, paths):
        paths = tuple(sorted(paths))
        super().__init__(
            f"Appendix {appendix_id} is claimed by more than one file: " + ", ".join(paths),
            paths,
        )
        self.appendix_id = appendix_id


class DuplicateTranslation(StructuralError):
    def __init__(self, locale: str, position: tuple, paths):
        paths = tuple(sorted(paths))
        super().__init__(
            f"Locale {locale}: {describe_position(position)} is translated by more "
            "than one file: " + ", ".join(paths),
            paths,
        )
        self.locale = locale
        self.position = position


def describe_position(position: tuple) -> str:
    """Human label for a ("chapter", part, n) or ("appendix", id) position."""
    if position and position[0] == "chapter":
        return f"part {position[1]} chapter {position[2]}"
    if position and position[0] == "appendix":
        return f"appendix {position[1]}"
    return str(position)
