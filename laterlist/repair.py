"""Schema repair: heal malformed or legacy documents on every load and import.

The walk goes root to leaf (tabs, containers, links, then trash) and fixes each
node in place. Ids are kept when they are usable and unclaimed, so running the
pass again over its own output changes nothing.
"""

import copy
import logging
import math
from typing import Any, Dict, Optional, Set, Tuple

from .document import Document, now_ms
from .ids import allocate_unique_id, new_id

logger = logging.getLogger(__name__)


def ensure_array(value: Any) -> list:
    return value if isinstance(value, list) else []


def ensure_string(value: Any, fallback: str = "") -> str:
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    return trimmed or fallback


def is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _deleted_sort_key(node: Any) -> float:
    if isinstance(node, dict) and is_finite_number(node.get("deletedAt")):
        return node["deletedAt"]
    return -math.inf


class _Repairer:
    def __init__(self, now: int):
        self.now = now
        self.changed = False
        self.used_tab_ids: Set[str] = set()
        self.used_container_ids: Set[str] = set()
        self.used_link_ids: Set[str] = set()
        # Object identities already placed in the tree; a second sighting is a
        # shared reference and gets its own copy.
        self.seen: Set[int] = set()

    def _set(self, node: Dict[str, Any], key: str, value: Any) -> None:
        if key in node:
            current = node[key]
            if type(current) is type(value) and current == value:
                return
        node[key] = value
        self.changed = True

    def _drop(self, node: Dict[str, Any], key: str) -> None:
        if key in node:
            del node[key]
            self.changed = True

    def _array(self, node: Dict[str, Any], key: str) -> list:
        value = node.get(key)
        if not isinstance(value, list):
            node[key] = []
            self.changed = True
        elif id(value) in self.seen:
            node[key] = list(value)
            self.changed = True
        items = node[key]
        self.seen.add(id(items))
        return items

    def _own(self, items: list, index: int, factory) -> Dict[str, Any]:
        node = items[index]
        if not isinstance(node, dict):
            items[index] = factory()
            self.changed = True
        elif id(node) in self.seen:
            items[index] = copy.deepcopy(node)
            self.changed = True
        node = items[index]
        self.seen.add(id(node))
        return node

    def run(self, data: Dict[str, Any]) -> bool:
        tabs = self._array(data, "tabs")
        trash = self._array(data, "trash")

        for index in range(len(tabs)):
            tab = self._own(tabs, index, _default_tab)
            self._repair_tab(tab)

        ordered = sorted(trash, key=_deleted_sort_key, reverse=True)
        if any(a is not b for a, b in zip(ordered, trash)):
            trash[:] = ordered
            self.changed = True
        for index in range(len(trash)):
            link = self._own(trash, index, _default_link)
            self._repair_link(link, in_trash=True)
        return self.changed

    def _repair_tab(self, tab: Dict[str, Any]) -> None:
        self._set(tab, "id", allocate_unique_id(tab.get("id"), "tab", self.used_tab_ids))
        self._set(tab, "name", ensure_string(tab.get("name"), "Tab"))
        containers = self._array(tab, "containers")
        for index in range(len(containers)):
            container = self._own(containers, index, _default_container)
            self._repair_container(container)

    def _repair_container(self, container: Dict[str, Any]) -> None:
        self._set(
            container,
            "id",
            allocate_unique_id(container.get("id"), "container", self.used_container_ids),
        )
        self._set(container, "name", ensure_string(container.get("name"), "Container"))
        links = self._array(container, "links")
        for index in range(len(links)):
            link = self._own(links, index, _default_link)
            self._repair_link(link, in_trash=False)

    def _repair_link(self, link: Dict[str, Any], in_trash: bool) -> None:
        self._set(link, "id", allocate_unique_id(link.get("id"), "link", self.used_link_ids))
        url = ensure_string(link.get("url"), "")
        self._set(link, "url", url)
        self._set(link, "title", ensure_string(link.get("title"), url or "Link"))
        if not is_finite_number(link.get("savedAt")):
            self._set(link, "savedAt", self.now)

        # deletedAt only means something while the link sits in trash.
        if not in_trash or not is_finite_number(link.get("deletedAt")):
            self._drop(link, "deletedAt")
        if not isinstance(link.get("locked"), bool):
            self._drop(link, "locked")

        for key in ("imageUrl", "description", "summary"):
            if not isinstance(link.get(key), str):
                self._drop(link, key)
        if not is_finite_number(link.get("publishedAt")):
            self._drop(link, "publishedAt")
        for key in ("imageUrls", "keywords"):
            self._string_list(link, key)

    def _string_list(self, link: Dict[str, Any], key: str) -> None:
        value = link.get(key)
        if not isinstance(value, list):
            self._drop(link, key)
            return
        strings = [item for item in value if isinstance(item, str)]
        if len(strings) != len(value) or id(value) in self.seen:
            link[key] = strings
            self.changed = True
        self.seen.add(id(link[key]))


def _default_tab() -> Dict[str, Any]:
    return {"id": new_id("tab"), "name": "Tab", "containers": []}


def _default_container() -> Dict[str, Any]:
    return {"id": new_id("container"), "name": "Container", "links": []}


def _default_link() -> Dict[str, Any]:
    return {"id": new_id("link"), "title": "Link", "url": "", "savedAt": now_ms()}


def repair(data: Any, now: Optional[int] = None) -> bool:
    """Mutate ``data`` in place until it satisfies the document invariants.

    Returns True if anything was altered. Never raises on odd input; a
    non-dict root cannot be fixed in place and is reported as unchanged.
    """
    if not isinstance(data, dict):
        return False
    changed = _Repairer(now if now is not None else now_ms()).run(data)
    if changed:
        logger.debug("repair pass altered the document")
    return changed


def parse_document(raw: Any, now: Optional[int] = None) -> Tuple[Document, bool]:
    """The only entry point for untyped data: repair, then build typed objects."""
    changed = False
    if not isinstance(raw, dict):
        raw = {}
        changed = True
    changed = repair(raw, now=now) or changed
    return Document.from_dict(raw), changed


def repair_document(document: Document, now: Optional[int] = None) -> bool:
    """Run repair over a typed document, replacing its contents if anything changed."""
    data = document.to_dict()
    changed = repair(data, now=now)
    if changed:
        fresh = Document.from_dict(data)
        document.tabs = fresh.tabs
        document.trash = fresh.trash
        document.extra = fresh.extra
    return changed

