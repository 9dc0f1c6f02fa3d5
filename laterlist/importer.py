"""JSON and OneTab imports, and the JSON export they round-trip with."""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit

from .document import Container, Document, Link, Tab, now_ms
from .errors import InvalidImportFormat
from .ids import allocate_unique_id
from .repair import parse_document, repair_document

logger = logging.getLogger(__name__)


ONETAB_TAB_NAME = "Imported from OneTab"
ARCHIVED_MARKER = "(Archived)"
_GROUP_SPLIT_RE = re.compile(r"\n\s*\n")
_METADATA_SUFFIX_RE = re.compile(r"^(.*?)\s*\{category:")


@dataclass
class ImportResult:
    mode: str
    document: Document
    tabs_imported: int
    trash_imported: int


@dataclass
class OneTabResult:
    links_imported: int
    containers_created: int


def export_json(document: Document) -> str:
    """Pretty-printed document, the format ``import_json`` reads back."""
    return json.dumps(document.to_dict(), ensure_ascii=False, indent=2)


def import_json(document: Document, raw: Union[str, bytes], mode: str = "merge") -> ImportResult:
    """Merge an exported document into ``document``, or replace it outright.

    Returns a new, repaired document; ``document`` itself is left untouched so
    a rejected import changes nothing. Repair is what settles id collisions
    between the two sides: existing ids win, imported ones are re-minted.
    """
    if mode not in ("merge", "replace"):
        raise ValueError(f"unknown import mode: {mode!r}")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise InvalidImportFormat(f"Error parsing JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("tabs"), list):
        raise InvalidImportFormat("Invalid LaterList JSON format")

    imported_trash = data.get("trash") if isinstance(data.get("trash"), list) else []
    if mode == "replace":
        merged = data
    else:
        merged = document.to_dict()
        merged["tabs"].extend(data["tabs"])
        merged["trash"].extend(imported_trash)

    result, _ = parse_document(merged)
    logger.info(
        "JSON import (%s): %d tab(s), %d trashed link(s)",
        mode, len(data["tabs"]), len(imported_trash),
    )
    return ImportResult(mode, result, len(data["tabs"]), len(imported_trash))


def _parse_url(text: str) -> Optional[Tuple[str, str]]:
    try:
        parts = urlsplit(text)
        hostname = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return text, hostname or ""


def _parse_onetab_line(line: str) -> Optional[Tuple[str, str]]:
    """``url | title {category:...}`` or a bare URL -> (url, title)."""
    url_part, sep, title_part = line.partition(" | ")
    if sep:
        title_part = title_part.strip()
        match = _METADATA_SUFFIX_RE.match(title_part)
        if match:
            title_part = match.group(1).strip()
    parsed = _parse_url(url_part.strip())
    if parsed is None:
        return None
    url, hostname = parsed
    return url, (title_part if sep else "") or hostname or url


def parse_onetab(text: str) -> List[List[Tuple[str, str]]]:
    """Split a OneTab export into groups of (url, title); blank lines separate groups."""
    groups = []
    for block in _GROUP_SPLIT_RE.split(text.replace("\r\n", "\n").strip()):
        entries = []
        for line in block.split("\n"):
            line = line.strip()
            if not line or line == ARCHIVED_MARKER or line.startswith("http://localhost"):
                continue
            entry = _parse_onetab_line(line)
            if entry is not None:
                entries.append(entry)
        groups.append(entries)
    return groups


def import_onetab(document: Document, text: str, now: Optional[int] = None) -> OneTabResult:
    """Append one container per non-empty OneTab group to the first tab."""
    now = now if now is not None else now_ms()
    used_links = document.link_ids()
    used_containers = document.container_ids()
    containers = []
    for index, entries in enumerate(parse_onetab(text)):
        if not entries:
            continue
        links = [
            Link(id=allocate_unique_id(None, "link", used_links), title=title, url=url, saved_at=now)
            for url, title in entries
        ]
        containers.append(
            Container(
                id=allocate_unique_id(None, "container", used_containers),
                name=f"Imported Group {index + 1}",
                links=links,
            )
        )

    if containers:
        if not document.tabs:
            document.tabs.append(
                Tab(id=allocate_unique_id(None, "tab", document.tab_ids()), name=ONETAB_TAB_NAME)
            )
        document.tabs[0].containers.extend(containers)
    repair_document(document)

    result = OneTabResult(
        links_imported=sum(len(c.links) for c in containers),
        containers_created=len(containers),
    )
    logger.info(
        "OneTab import: %d link(s) into %d container(s)",
        result.links_imported, result.containers_created,
    )
    return result
