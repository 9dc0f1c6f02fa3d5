"""Typed document model: tabs -> containers -> links, plus trash.

These types are only built from data that has already passed through
``repair.parse_document``; they do not validate their input.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union


Number = Union[int, float]

# Optional link metadata, in the order it is serialized.
LINK_METADATA_KEYS = (
    "imageUrl",
    "imageUrls",
    "publishedAt",
    "description",
    "summary",
    "keywords",
)
LINK_KEYS = ("id", "title", "url", "savedAt", "deletedAt", "locked") + LINK_METADATA_KEYS
CONTAINER_KEYS = ("id", "name", "links")
TAB_KEYS = ("id", "name", "containers")
DOCUMENT_KEYS = ("tabs", "trash")


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def _extra(data: Dict[str, Any], known) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _copy_list(value: Any) -> Any:
    # Anything else is passed through as is for repair to drop.
    return list(value) if isinstance(value, list) else value


@dataclass
class Link:
    """A saved URL with its title, timestamps and optional extracted metadata."""
    id: str
    title: str
    url: str
    saved_at: Number
    deleted_at: Optional[Number] = None
    locked: Optional[bool] = None
    image_url: Optional[str] = None
    image_urls: Optional[List[str]] = None
    published_at: Optional[Number] = None
    description: Optional[str] = None
    summary: Optional[str] = None
    keywords: Optional[List[str]] = None
    # Unknown keys from imports/legacy data, carried through untouched.
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Link":
        return cls(
            id=data["id"],
            title=data["title"],
            url=data["url"],
            saved_at=data["savedAt"],
            deleted_at=data.get("deletedAt"),
            locked=data.get("locked"),
            image_url=data.get("imageUrl"),
            image_urls=_copy_list(data.get("imageUrls")),
            published_at=data.get("publishedAt"),
            description=data.get("description"),
            summary=data.get("summary"),
            keywords=_copy_list(data.get("keywords")),
            extra=_extra(data, LINK_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "savedAt": self.saved_at,
        }
        optional = (
            ("deletedAt", self.deleted_at),
            ("locked", self.locked),
            ("imageUrl", self.image_url),
            ("imageUrls", _copy_list(self.image_urls)),
            ("publishedAt", self.published_at),
            ("description", self.description),
            ("summary", self.summary),
            ("keywords", _copy_list(self.keywords)),
        )
        for key, value in optional:
            if value is not None:
                out[key] = value
        out.update(self.extra)
        return out


@dataclass
class Container:
    """A named, ordered group of links inside one tab."""
    id: str
    name: str
    links: List[Link] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Container":
        return cls(
            id=data["id"],
            name=data["name"],
            links=[Link.from_dict(link) for link in data.get("links", [])],
            extra=_extra(data, CONTAINER_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {"id": self.id, "name": self.name, "links": [l.to_dict() for l in self.links]}
        out.update(self.extra)
        return out

    def find_link(self, link_id: str) -> Tuple[int, Optional[Link]]:
        for index, link in enumerate(self.links):
            if link.id == link_id:
                return index, link
        return -1, None


@dataclass
class Tab:
    """A top-level named grouping of containers."""
    id: str
    name: str
    containers: List[Container] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tab":
        return cls(
            id=data["id"],
            name=data["name"],
            containers=[Container.from_dict(c) for c in data.get("containers", [])],
            extra=_extra(data, TAB_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "name": self.name,
            "containers": [c.to_dict() for c in self.containers],
        }
        out.update(self.extra)
        return out

    def find_container(self, container_id: str) -> Optional[Container]:
        for container in self.containers:
            if container.id == container_id:
                return container
        return None


@dataclass
class Document:
    """Root aggregate; persisted as one JSON blob."""
    tabs: List[Tab] = field(default_factory=list)
    trash: List[Link] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(
            tabs=[Tab.from_dict(t) for t in data.get("tabs", [])],
            trash=[Link.from_dict(l) for l in data.get("trash", [])],
            extra=_extra(data, DOCUMENT_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "tabs": [t.to_dict() for t in self.tabs],
            "trash": [l.to_dict() for l in self.trash],
        }
        out.update(self.extra)
        return out

    def find_tab(self, tab_id: Optional[str]) -> Optional[Tab]:
        for tab in self.tabs:
            if tab.id == tab_id:
                return tab
        return None

    def find_container(self, tab_id: Optional[str], container_id: Optional[str]) -> Optional[Container]:
        tab = self.find_tab(tab_id)
        return tab.find_container(container_id) if tab else None

    def find_link(self, tab_id: str, container_id: str, link_id: str) -> Optional[Link]:
        container = self.find_container(tab_id, container_id)
        if container is None:
            return None
        return container.find_link(link_id)[1]

    def iter_links(self) -> Iterator[Tuple[Tab, Container, Link]]:
        """Yield every active link with its owning tab and container, in order."""
        for tab in self.tabs:
            for container in tab.containers:
                for link in container.links:
                    yield tab, container, link

    def tab_ids(self) -> Set[str]:
        return {t.id for t in self.tabs}

    def container_ids(self) -> Set[str]:
        return {c.id for t in self.tabs for c in t.containers}

    def link_ids(self) -> Set[str]:
        ids = {link.id for _, _, link in self.iter_links()}
        ids.update(link.id for link in self.trash)
        return ids
