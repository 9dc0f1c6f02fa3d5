import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .normalize import DEFAULT_RULES, CleanupRules, merge_rules


DEFAULT_CONTAINER_NAME_FORMAT = "ddd, MMM DD, YYYY at HHmm Hrs"

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
# Longest tokens first so "HHmm" wins over "HH" and "YYYY" over "YY".
_TOKEN_RE = re.compile(r"YYYY|YY|MMM|MM|DD|ddd|HHmm|HH|mm")


@dataclass
class Settings:
    container_name_format: str = DEFAULT_CONTAINER_NAME_FORMAT
    # Empty means "first tab".
    send_all_tabs_destination: str = ""
    cleanup_rules: CleanupRules = field(default_factory=lambda: DEFAULT_RULES)

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        """Stored values merged over defaults; wrong-typed values are ignored."""
        if not isinstance(data, dict):
            return cls()
        fmt = data.get("containerNameFormat")
        dest = data.get("sendAllTabsDestination")
        return cls(
            container_name_format=fmt.strip() if isinstance(fmt, str) and fmt.strip() else DEFAULT_CONTAINER_NAME_FORMAT,
            send_all_tabs_destination=dest if isinstance(dest, str) else "",
            cleanup_rules=merge_rules(data.get("cleanupRules")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "containerNameFormat": self.container_name_format,
            "sendAllTabsDestination": self.send_all_tabs_destination,
            "cleanupRules": self.cleanup_rules.to_dict(),
        }


def format_container_name(when: datetime, fmt: Optional[str] = None) -> str:
    """Render ``fmt`` with date tokens, e.g. "Sun, Oct 18, 2026 at 0930 Hrs"."""
    fmt = fmt or DEFAULT_CONTAINER_NAME_FORMAT
    tokens = {
        "YYYY": f"{when.year:04d}",
        "YY": f"{when.year % 100:02d}",
        "MMM": _MONTHS[when.month - 1],
        "MM": f"{when.month:02d}",
        "DD": f"{when.day:02d}",
        "ddd": _DAYS[when.weekday()],
        "HH": f"{when.hour:02d}",
        "mm": f"{when.minute:02d}",
        "HHmm": f"{when.hour:02d}{when.minute:02d}",
    }
    return _TOKEN_RE.sub(lambda m: tokens[m.group(0)], fmt)
