"""
Path policy: decide whether a target path may be mutated.

A path is classified against two ordered lists of entries taken from
configuration: an allow list (safe to auto-modify) and a deny list (never
modify). Deny is a hard veto. A path in neither list is UNSPECIFIED, which
gates writes exactly like PROTECTED.

Entry syntax:
    server/**        the directory and everything beneath it
    server/          same as above
    src/*.py         glob; '*' and '?' never cross '/', '**' spans segments
    package.json     the exact path, or anything beneath it if a directory
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

_GLOB_CHARS = ("*", "?", "[")


class PathClassification(Enum):
    MUTABLE = "mutable"
    PROTECTED = "protected"
    UNSPECIFIED = "unspecified"


def normalize_entry(entry: str) -> str:
    text = str(entry or "").strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text


@dataclass(frozen=True)
class PathRule:
    """One predicate derived from a list entry."""

    entry: str
    kind: str  # "prefix" | "glob"
    value: str

    def matches(self, relative: str) -> bool:
        if self.kind == "prefix":
            if not self.value:
                return True
            return relative == self.value or relative.startswith(self.value + "/")
        return _glob_match(relative.split("/"), self.value.split("/"))

    @classmethod
    def from_entry(cls, entry: str) -> Optional["PathRule"]:
        text = normalize_entry(entry)
        if not text:
            return None
        if text == "**":
            return cls(entry=entry, kind="prefix", value="")
        if text.endswith("/**") and not any(c in text[:-3] for c in _GLOB_CHARS):
            return cls(entry=entry, kind="prefix", value=text[:-3].rstrip("/"))
        if any(c in text for c in _GLOB_CHARS):
            return cls(entry=entry, kind="glob", value=text.rstrip("/"))
        return cls(entry=entry, kind="prefix", value=text.rstrip("/"))


def _glob_match(parts: List[str], pattern: List[str]) -> bool:
    """Segment-aware glob: '**' consumes zero or more whole segments."""
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        return any(_glob_match(parts[i:], pattern[1:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    if not fnmatch.fnmatchcase(parts[0], head):
        return False
    return _glob_match(parts[1:], pattern[1:])


class PathMatcher:
    """Ordered list of rules; a path matches if any rule matches."""

    def __init__(self, entries: Iterable[str]):
        self.rules: Tuple[PathRule, ...] = tuple(
            rule for rule in (PathRule.from_entry(e) for e in (entries or [])) if rule is not None
        )

    def first_match(self, relative: str) -> Optional[PathRule]:
        for rule in self.rules:
            if rule.matches(relative):
                return rule
        return None

    def matches(self, relative: str) -> bool:
        return self.first_match(relative) is not None


def resolve_relative(path: str, root: Path) -> Optional[str]:
    """Return the root-relative POSIX form of `path`, or None if it escapes root.

    The parent directory is resolved through symlinks when it exists so a
    linked directory cannot smuggle a write outside the project.
    """
    if not path or not str(path).strip():
        return None
    root = Path(root).resolve()
    candidate = Path(str(path).strip().replace("\\", "/"))
    if not candidate.is_absolute():
        candidate = root / candidate
    candidate = Path(os.path.normpath(str(candidate)))
    parent = candidate.parent
    try:
        if parent.exists():
            candidate = parent.resolve() / candidate.name
    except OSError:
        pass
    try:
        relative = candidate.relative_to(root)
    except ValueError:
        return None
    text = relative.as_posix()
    if text in ("", "."):
        return None
    return text


def classify(
    path: str,
    allow_list: Iterable[str],
    deny_list: Iterable[str],
    root: Optional[Path] = None,
) -> PathClassification:
    """Classify a path. Deny wins; absence from both lists is UNSPECIFIED."""
    if root is None:
        from .paths import project_root

        root = project_root()
    relative = resolve_relative(path, root)
    if relative is None:
        return PathClassification.PROTECTED
    if PathMatcher(deny_list).matches(relative):
        return PathClassification.PROTECTED
    if PathMatcher(allow_list).matches(relative):
        return PathClassification.MUTABLE
    return PathClassification.UNSPECIFIED


def is_mutable(
    path: str,
    allow_list: Iterable[str],
    deny_list: Iterable[str],
    root: Optional[Path] = None,
) -> bool:
    return classify(path, allow_list, deny_list, root=root) is PathClassification.MUTABLE
