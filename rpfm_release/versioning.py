from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import ChangelogUnreadable, HeadingNotFound, MalformedRef, MissingInput
from .models import ChangelogEntry, Version

TAG_PREFIX = "refs/tags/"

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def extract_version(ref: str) -> Version:
    """Derive the release version from a ``refs/tags/<tag>`` ref.

    The tag itself is not validated as semver: ``refs/tags/nightly`` yields
    ``nightly``. A single leading ``v`` is dropped for the semantic form.
    """

    if not ref.startswith(TAG_PREFIX):
        raise MalformedRef(f"Ref '{ref}' is not a tag ref (expected '{TAG_PREFIX}<tag>').")
    tag = ref[len(TAG_PREFIX) :]
    if not tag:
        raise MalformedRef(f"Ref '{ref}' has an empty tag name.")
    semantic = tag[1:] if tag.startswith("v") and len(tag) > 1 else tag
    return Version(raw_tag=tag, semantic=semantic)


def _normalize_label(label: str) -> str:
    return label.strip().strip("[]")


def _parse_heading(line: str) -> Optional[Tuple[int, str]]:
    match = _HEADING_RE.match(line)
    if not match:
        return None
    text = match.group(2)
    label = text.split()[0] if text.split() else ""
    return len(match.group(1)), _normalize_label(label)


def _headings(lines: List[str]) -> List[Optional[Tuple[int, str]]]:
    """Parse each line as a heading, ignoring lines inside fenced code blocks."""

    parsed: List[Optional[Tuple[int, str]]] = []
    fence: Optional[str] = None
    for line in lines:
        match = _FENCE_RE.match(line)
        if match:
            if fence is None:
                fence = match.group(1)
            elif match.group(1) == fence:
                fence = None
            parsed.append(None)
            continue
        parsed.append(None if fence else _parse_heading(line))
    return parsed


def find_changelog_entry(document: str, heading: str) -> ChangelogEntry:
    """Return the trimmed body under ``heading``.

    The section ends at the next heading of equal or higher rank (same number
    of ``#`` or fewer). Deeper sub-headings stay part of the body. A heading
    needs a space after its marker, and ``#`` lines inside code fences are body
    text.
    """

    target = _normalize_label(heading)
    lines = document.splitlines()
    headings = _headings(lines)
    start: Optional[int] = None
    rank = 0
    for index, parsed in enumerate(headings):
        if parsed and parsed[1] == target:
            rank, start = parsed[0], index
            break
    if start is None:
        raise HeadingNotFound(f"Changelog has no section for '{heading}'.")

    end = len(lines)
    for index in range(start + 1, len(lines)):
        parsed = headings[index]
        if parsed and parsed[0] <= rank:
            end = index
            break
    return ChangelogEntry(heading=target, body="\n".join(lines[start + 1 : end]).strip())


def load_changelog_entry(path: Union[str, Path], heading: str) -> ChangelogEntry:
    changelog_path = Path(path)
    if not changelog_path.exists():
        raise MissingInput(
            f"Changelog not found: {changelog_path}", missing=[str(changelog_path)], component="changelog"
        )
    try:
        document = changelog_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ChangelogUnreadable(f"Unable to read changelog {changelog_path}: {exc}") from exc
    return find_changelog_entry(document, heading)
