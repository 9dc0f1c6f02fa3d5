"""Tree mutations over an in-memory ``Document``.

Every function either moves the tree to a valid next state or leaves it
untouched. Stale ids are a silent no-op (``None``/``False``/``0``), since the
caller's view of the document may lag behind another surface's write.
Persisting is the caller's job.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .document import Container, Document, Link, Tab, now_ms
from .duplicates import DuplicateGroup
from .ids import allocate_unique_id
from .repair import ensure_string
from .settings import Settings, format_container_name

logger = logging.getLogger(__name__)


DEFAULT_TAB_NAME = "Saved"
DEFAULT_CONTAINER_NAME = "Links"
RESTORED_CONTAINER_NAME = "Restored"
ARCHIVE_CONTAINER_NAME = "Archived"

_METADATA_ATTRS = {
    "imageUrl": "image_url",
    "imageUrls": "image_urls",
    "publishedAt": "published_at",
    "description": "description",
    "summary": "summary",
    "keywords": "keywords",
}


@dataclass(frozen=True)
class LinkRef:
    """A link addressed by its owning tab and container ids."""
    tab_id: str
    container_id: str
    link_id: str

    @classmethod
    def parse(cls, key: str) -> Optional["LinkRef"]:
        """Parse a ``tab|container|link`` selection key."""
        parts = key.strip().split("|")
        if len(parts) != 3 or not all(parts):
            return None
        return cls(*parts)


@dataclass(frozen=True)
class LinkLocation:
    tab_id: str
    container_id: str
    index: int


def _fresh_id(prefix: str, used: Set[str]) -> str:
    return allocate_unique_id(None, prefix, used)


def _new_container(document: Document, name: str) -> Container:
    return Container(id=_fresh_id("container", document.container_ids()), name=name)


def _sort_trash(document: Document) -> None:
    document.trash.sort(
        key=lambda l: l.deleted_at if l.deleted_at is not None else -math.inf,
        reverse=True,
    )


def _trash(document: Document, links: List[Link], now: int) -> None:
    for link in links:
        link.deleted_at = now
    document.trash.extend(links)
    _sort_trash(document)


def ensure_default_destination(
    document: Document, container_name: str = DEFAULT_CONTAINER_NAME
) -> Tuple[Tab, Container]:
    """First tab and its first container, synthesizing either one if missing.

    This is the only place that creates structure on the caller's behalf;
    repair never does.
    """
    if not document.tabs:
        document.tabs.append(Tab(id=_fresh_id("tab", document.tab_ids()), name=DEFAULT_TAB_NAME))
    tab = document.tabs[0]
    if not tab.containers:
        tab.containers.append(_new_container(document, container_name))
    return tab, tab.containers[0]


# Tabs

def create_tab(document: Document, name: str) -> Tab:
    tab = Tab(id=_fresh_id("tab", document.tab_ids()), name=ensure_string(name, "Tab"))
    document.tabs.append(tab)
    return tab


def rename_tab(document: Document, tab_id: str, name: str) -> bool:
    tab = document.find_tab(tab_id)
    name = ensure_string(name)
    if tab is None or not name:
        return False
    tab.name = name
    return True


def delete_tab(document: Document, tab_id: str, now: Optional[int] = None) -> Optional[List[Link]]:
    """Remove a tab, sending every link it holds to trash.

    Deleting the last tab is allowed here; keeping at least one tab is a
    policy for the calling layer.
    """
    tab = document.find_tab(tab_id)
    if tab is None:
        return None
    trashed = [link for container in tab.containers for link in container.links]
    _trash(document, trashed, now if now is not None else now_ms())
    document.tabs.remove(tab)
    logger.info("Deleted tab %s, %d link(s) to trash", tab_id, len(trashed))
    return trashed


# Containers

def create_container(document: Document, tab_id: str, name: str) -> Optional[Container]:
    """New containers go to the front of the tab."""
    tab = document.find_tab(tab_id)
    if tab is None:
        return None
    container = _new_container(document, ensure_string(name, "Container"))
    tab.containers.insert(0, container)
    return container


def rename_container(document: Document, tab_id: str, container_id: str, name: str) -> bool:
    container = document.find_container(tab_id, container_id)
    name = ensure_string(name)
    if container is None or not name:
        return False
    container.name = name
    return True


def delete_container(
    document: Document, tab_id: str, container_id: str, now: Optional[int] = None
) -> Optional[List[Link]]:
    tab = document.find_tab(tab_id)
    container = tab.find_container(container_id) if tab else None
    if container is None:
        return None
    trashed = list(container.links)
    _trash(document, trashed, now if now is not None else now_ms())
    tab.containers.remove(container)
    logger.info("Deleted container %s, %d link(s) to trash", container_id, len(trashed))
    return trashed


def move_container(
    document: Document, from_tab_id: str, old_index: int, to_tab_id: str, new_index: int
) -> bool:
    """Drag a container (with all of its links) to a position in any tab."""
    source = document.find_tab(from_tab_id)
    target = document.find_tab(to_tab_id)
    if source is None or target is None or not 0 <= old_index < len(source.containers):
        return False
    if source is target and old_index == new_index:
        return False
    moved = source.containers.pop(old_index)
    target.containers.insert(max(0, min(new_index, len(target.containers))), moved)
    return True


# Links

def add_link(
    document: Document,
    url: str,
    title: Optional[str] = None,
    tab_id: Optional[str] = None,
    container_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[int] = None,
) -> Link:
    """Save a link into (tab, container), falling back to the first of each.

    ``metadata`` uses the stored camelCase keys (``imageUrl``, ``keywords``, ...)
    and is copied as given; repair coerces types on the next load.
    """
    tab = document.find_tab(tab_id) or (document.tabs[0] if document.tabs else None)
    if tab is None:
        tab, container = ensure_default_destination(document)
    else:
        container = tab.find_container(container_id) or (tab.containers[0] if tab.containers else None)
        if container is None:
            container = _new_container(document, DEFAULT_CONTAINER_NAME)
            tab.containers.append(container)

    url = ensure_string(url)
    link = Link(
        id=_fresh_id("link", document.link_ids()),
        title=ensure_string(title, url or "Link"),
        url=url,
        saved_at=now if now is not None else now_ms(),
    )
    for key, value in (metadata or {}).items():
        attr = _METADATA_ATTRS.get(key)
        if attr and value is not None:
            setattr(link, attr, value)
    container.links.append(link)
    return link


def edit_link(
    document: Document,
    tab_id: str,
    container_id: str,
    link_id: str,
    title: Optional[str] = None,
    url: Optional[str] = None,
) -> bool:
    link = document.find_link(tab_id, container_id, link_id)
    if link is None:
        return False
    if ensure_string(title):
        link.title = title.strip()
    if ensure_string(url):
        link.url = url.strip()
    return True


def toggle_lock(document: Document, tab_id: str, container_id: str, link_id: str) -> Optional[bool]:
    """Flip the locked flag; returns the new state."""
    link = document.find_link(tab_id, container_id, link_id)
    if link is None:
        return None
    link.locked = not link.locked
    return link.locked


def move_link_to_trash(
    document: Document, tab_id: str, container_id: str, link_id: str, now: Optional[int] = None
) -> Optional[Link]:
    container = document.find_container(tab_id, container_id)
    if container is None:
        return None
    index, link = container.find_link(link_id)
    if link is None:
        return None
    del container.links[index]
    _trash(document, [link], now if now is not None else now_ms())
    return link


def restore_link(document: Document, link_id: str) -> Optional[Link]:
    """Move a trashed link back to the first tab's first container."""
    for index, link in enumerate(document.trash):
        if link.id == link_id:
            break
    else:
        return None
    del document.trash[index]
    link.deleted_at = None
    _, container = ensure_default_destination(document, RESTORED_CONTAINER_NAME)
    container.links.append(link)
    return link


def purge_link(document: Document, link_id: str) -> Optional[Link]:
    """Permanently remove one link from trash."""
    for index, link in enumerate(document.trash):
        if link.id == link_id:
            return document.trash.pop(index)
    return None


def empty_trash(document: Document) -> int:
    count = len(document.trash)
    document.trash.clear()
    return count


def move_link(document: Document, link_id: str, source: LinkLocation, target: LinkLocation) -> bool:
    """Drag-reorder: take the link out of ``source`` and insert it at ``target.index``.

    The recorded source index is trusted only if it still points at
    ``link_id``; otherwise the link is looked up by id.
    """
    from_container = document.find_container(source.tab_id, source.container_id)
    to_container = document.find_container(target.tab_id, target.container_id)
    if from_container is None or to_container is None:
        return False

    index = source.index
    if not (0 <= index < len(from_container.links) and from_container.links[index].id == link_id):
        index, _ = from_container.find_link(link_id)
        if index == -1:
            return False
    if from_container is to_container and index == target.index:
        return False

    moved = from_container.links.pop(index)
    to_container.links.insert(max(0, min(target.index, len(to_container.links))), moved)
    return True


def bulk_move_selected(
    document: Document, selection: Iterable[LinkRef], tab_id: str, container_id: str
) -> int:
    """Move every selected link to the end of one container; returns the count moved."""
    destination = document.find_container(tab_id, container_id)
    if destination is None:
        return 0
    moved = 0
    for ref in selection:
        # Resolve from ids each time; earlier moves shift indices.
        source = document.find_container(ref.tab_id, ref.container_id)
        if source is None:
            continue
        index, link = source.find_link(ref.link_id)
        if link is None:
            continue
        del source.links[index]
        destination.links.append(link)
        moved += 1
    return moved


def bulk_trash_selected(
    document: Document, selection: Iterable[LinkRef], now: Optional[int] = None
) -> List[Link]:
    now = now if now is not None else now_ms()
    trashed = []
    for ref in selection:
        link = move_link_to_trash(document, ref.tab_id, ref.container_id, ref.link_id, now=now)
        if link is not None:
            trashed.append(link)
    return trashed


def ensure_archive_container(document: Document) -> Optional[Container]:
    if not document.tabs:
        return None
    first_tab = document.tabs[0]
    for container in first_tab.containers:
        if container.name == ARCHIVE_CONTAINER_NAME:
            return container
    archive = _new_container(document, ARCHIVE_CONTAINER_NAME)
    first_tab.containers.append(archive)
    return archive


def archive_link(document: Document, tab_id: str, container_id: str, link_id: str) -> Optional[Link]:
    container = document.find_container(tab_id, container_id)
    if container is None:
        return None
    index, link = container.find_link(link_id)
    if link is None:
        return None
    del container.links[index]
    archive = ensure_archive_container(document)
    archive.links.append(link)
    return link


def open_link(
    document: Document,
    tab_id: str,
    container_id: str,
    link_id: str,
    archive: bool = False,
    now: Optional[int] = None,
) -> Optional[Link]:
    """Bookkeeping after a link is opened: unlocked links leave their container.

    They go to trash, or to the "Archived" container when ``archive`` is set.
    Returns the link that was moved, or None if it stays (locked or gone).
    """
    link = document.find_link(tab_id, container_id, link_id)
    if link is None or link.locked:
        return None
    if archive:
        return archive_link(document, tab_id, container_id, link_id)
    return move_link_to_trash(document, tab_id, container_id, link_id, now=now)


def resolve_group_to_keep(
    document: Document, group: DuplicateGroup, strategy: str = "newest", now: Optional[int] = None
) -> List[Link]:
    """Keep one member of a duplicate group and trash the others.

    "newest" keeps the largest savedAt, "oldest" the smallest; ties go to the
    first member. Any other strategy keeps the first member.
    """
    members = group.members
    if len(members) < 2:
        return []
    keep = 0
    for index, member in enumerate(members):
        if strategy == "newest" and member.saved_at > members[keep].saved_at:
            keep = index
        elif strategy == "oldest" and member.saved_at < members[keep].saved_at:
            keep = index

    now = now if now is not None else now_ms()
    trashed = []
    for index, member in enumerate(members):
        if index == keep:
            continue
        link = move_link_to_trash(document, member.tab_id, member.container_id, member.link_id, now=now)
        if link is not None:
            trashed.append(link)
    logger.info("Resolved duplicates for %s: trashed %d", group.normalized_key, len(trashed))
    return trashed


def save_all_tabs(
    document: Document,
    pages: Iterable[Dict[str, Any]],
    settings: Optional[Settings] = None,
    when: Optional[datetime] = None,
) -> Optional[Container]:
    """Save a batch of open pages into one new, date-named container.

    The container goes to the front of the configured destination tab (first
    tab if unset or gone). Pages without a URL are skipped.
    """
    settings = settings or Settings()
    when = when or datetime.now()
    saved_at = int(when.timestamp() * 1000)
    entries = [
        (ensure_string(p.get("url")), p.get("title"))
        for p in pages
        if isinstance(p, dict) and ensure_string(p.get("url"))
    ]
    if not entries:
        return None

    tab = document.find_tab(settings.send_all_tabs_destination or None)
    if tab is None:
        if not document.tabs:
            document.tabs.append(Tab(id=_fresh_id("tab", document.tab_ids()), name=DEFAULT_TAB_NAME))
        tab = document.tabs[0]
    container = _new_container(document, format_container_name(when, settings.container_name_format))
    used = document.link_ids()
    for url, title in entries:
        container.links.append(
            Link(
                id=_fresh_id("link", used),
                title=ensure_string(title, url),
                url=url,
                saved_at=saved_at,
            )
        )
    tab.containers.insert(0, container)
    return container
