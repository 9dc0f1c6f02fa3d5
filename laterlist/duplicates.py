from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .document import Document, Number
from .normalize import DEFAULT_RULES, CleanupRules, normalize


@dataclass
class DuplicateMember:
    """Where one copy of a duplicated link lives."""
    tab_id: str
    tab_name: str
    container_id: str
    container_name: str
    link_id: str
    title: str
    url: str
    saved_at: Number

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tabId": self.tab_id,
            "tabName": self.tab_name,
            "containerId": self.container_id,
            "containerName": self.container_name,
            "linkId": self.link_id,
            "title": self.title,
            "url": self.url,
            "savedAt": self.saved_at,
        }


@dataclass
class DuplicateGroup:
    normalized_key: str
    members: List[DuplicateMember] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalizedKey": self.normalized_key,
            "members": [m.to_dict() for m in self.members],
        }


def find_duplicate_groups(
    document: Document,
    rules: CleanupRules = DEFAULT_RULES,
    aggressive: Optional[bool] = None,
) -> List[DuplicateGroup]:
    """Group active links by normalized URL, keeping only groups with 2+ members.

    Largest groups come first; equal sizes keep document order. Trash is not
    scanned. ``aggressive`` overrides tracking-parameter stripping for this
    call only.
    """
    rules = rules.with_aggressive(aggressive)
    groups: "OrderedDict[str, DuplicateGroup]" = OrderedDict()
    for tab, container, link in document.iter_links():
        key = normalize(link.url, rules)
        group = groups.get(key)
        if group is None:
            group = groups[key] = DuplicateGroup(key)
        group.members.append(
            DuplicateMember(
                tab_id=tab.id,
                tab_name=tab.name,
                container_id=container.id,
                container_name=container.name,
                link_id=link.id,
                title=link.title,
                url=link.url,
                saved_at=link.saved_at,
            )
        )
    dupes = [g for g in groups.values() if len(g.members) > 1]
    dupes.sort(key=lambda g: len(g.members), reverse=True)
    return dupes
