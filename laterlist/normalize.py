"""URL normalization for duplicate comparison.

``normalize`` never rewrites stored URLs and never raises: unparseable input
falls back to a trimmed (optionally lowercased) string, and broken user
regexes are skipped.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Dict, List, Optional, Pattern, Tuple
from urllib.parse import SplitResult, unquote_plus, urlsplit

from .errors import NormalizationFailure

logger = logging.getLogger(__name__)


DEFAULT_TRACKING_PARAM_NAMES = ("ref", "ref_src", "igshid")
DEFAULT_TRACKING_PARAM_PREFIXES = ("utm_", "icid", "fbclid", "gclid", "mc_eid")


@dataclass(frozen=True)
class CleanupRules:
    """Settings for ``normalize``; hashable so compiled forms can be cached."""
    enabled: bool = True
    strip_tracking_params: bool = False
    tracking_param_names: Tuple[str, ...] = DEFAULT_TRACKING_PARAM_NAMES
    tracking_param_prefixes: Tuple[str, ...] = DEFAULT_TRACKING_PARAM_PREFIXES
    path_rewrite_rules: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    ignore_hash_patterns: Tuple[str, ...] = field(default_factory=tuple)
    trim_trailing_slash: bool = True
    lowercase: bool = True

    def with_aggressive(self, aggressive: Optional[bool]) -> "CleanupRules":
        """The live "aggressive" toggle: flip tracking-parameter stripping."""
        if aggressive is None or aggressive == self.strip_tracking_params:
            return self
        return replace(self, strip_tracking_params=aggressive)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "stripTrackingParams": self.strip_tracking_params,
            "trackingParamNames": list(self.tracking_param_names),
            "trackingParamPrefixes": list(self.tracking_param_prefixes),
            "pathRewriteRules": [
                {"pattern": pattern, "replace": repl}
                for pattern, repl in self.path_rewrite_rules
            ],
            "ignoreHashPatterns": list(self.ignore_hash_patterns),
            "trimTrailingSlash": self.trim_trailing_slash,
            "lowercase": self.lowercase,
        }


DEFAULT_RULES = CleanupRules()

_BOOL_FIELDS = {
    "enabled": "enabled",
    "stripTrackingParams": "strip_tracking_params",
    "trimTrailingSlash": "trim_trailing_slash",
    "lowercase": "lowercase",
}
_STRING_LIST_FIELDS = {
    "trackingParamNames": "tracking_param_names",
    "trackingParamPrefixes": "tracking_param_prefixes",
    "ignoreHashPatterns": "ignore_hash_patterns",
}


def _rewrite_pairs(value: Any) -> Optional[Tuple[Tuple[str, str], ...]]:
    if not isinstance(value, list):
        return None
    pairs = []
    for item in value:
        if isinstance(item, dict) and isinstance(item.get("pattern"), str):
            repl = item.get("replace", "")
            pairs.append((item["pattern"], repl if isinstance(repl, str) else ""))
        elif isinstance(item, (list, tuple)) and len(item) == 2 and all(isinstance(p, str) for p in item):
            pairs.append((item[0], item[1]))
    return tuple(pairs)


def merge_rules(overrides: Any, base: CleanupRules = DEFAULT_RULES) -> CleanupRules:
    """Merge a stored (camelCase) rules record over ``base``.

    Fields with the wrong type are ignored and keep the base value.
    """
    if not isinstance(overrides, dict):
        return base
    changes: Dict[str, Any] = {}
    for key, attr in _BOOL_FIELDS.items():
        if isinstance(overrides.get(key), bool):
            changes[attr] = overrides[key]
    for key, attr in _STRING_LIST_FIELDS.items():
        value = overrides.get(key)
        if isinstance(value, list):
            changes[attr] = tuple(v for v in value if isinstance(v, str))
    pairs = _rewrite_pairs(overrides.get("pathRewriteRules"))
    if pairs is not None:
        changes["path_rewrite_rules"] = pairs
    return replace(base, **changes) if changes else base


# Replacements may be written with "$1" group references, as stored by the
# browser settings page; they become "\g<1>".
_JS_GROUP_RE = re.compile(r"\$(\d+)")


@dataclass(frozen=True)
class _CompiledRules:
    path_rules: Tuple[Tuple[Pattern, str], ...]
    hash_patterns: Tuple[Pattern, ...]


@lru_cache(maxsize=32)
def _compile(rules: CleanupRules) -> _CompiledRules:
    path_rules: List[Tuple[Pattern, str]] = []
    for pattern, repl in rules.path_rewrite_rules:
        try:
            path_rules.append((re.compile(pattern, re.IGNORECASE), _JS_GROUP_RE.sub(r"\\g<\1>", repl)))
        except re.error as e:
            logger.warning("Skipping path rewrite rule %r: %s", pattern, e)
    # Output is lowercased afterwards, so matching must not depend on case.
    hash_flags = re.IGNORECASE if rules.lowercase else 0
    hash_patterns: List[Pattern] = []
    for pattern in rules.ignore_hash_patterns:
        try:
            hash_patterns.append(re.compile(pattern, hash_flags))
        except re.error as e:
            logger.warning("Skipping hash pattern %r: %s", pattern, e)
    return _CompiledRules(tuple(path_rules), tuple(hash_patterns))


def _fallback(url: str, rules: CleanupRules) -> str:
    trimmed = url.strip()
    return trimmed.lower() if rules.lowercase else trimmed


def _is_tracking(key: str, rules: CleanupRules) -> bool:
    names = rules.tracking_param_names
    prefixes = rules.tracking_param_prefixes
    if rules.lowercase:
        key = key.lower()
        names = tuple(n.lower() for n in names)
        prefixes = tuple(p.lower() for p in prefixes)
    return key in names or any(key.startswith(prefix) for prefix in prefixes)


def _filter_query(query: str, rules: CleanupRules) -> str:
    if not rules.strip_tracking_params or not query:
        return query
    kept = []
    for piece in query.split("&"):
        if not piece:
            continue
        key = unquote_plus(piece.split("=", 1)[0])
        if not _is_tracking(key, rules):
            kept.append(piece)
    return "&".join(kept)


def _rewrite_path(path: str, compiled: _CompiledRules) -> str:
    for pattern, repl in compiled.path_rules:
        try:
            path = pattern.sub(repl, path, count=1)
        except (re.error, IndexError) as e:
            logger.debug("Path rewrite %r failed on %r: %s", pattern.pattern, path, e)
    return path


def _split(url: str) -> SplitResult:
    try:
        parts = urlsplit(url.strip())
    except ValueError as e:
        raise NormalizationFailure(str(e)) from e
    if not parts.scheme or not parts.netloc:
        raise NormalizationFailure("not an absolute URL")
    return parts


def normalize(url: Any, rules: CleanupRules = DEFAULT_RULES) -> str:
    """Canonical form of ``url`` for equality comparison."""
    if not isinstance(url, str):
        return ""
    if not rules.enabled:
        return _fallback(url, rules)

    try:
        parts = _split(url)
    except NormalizationFailure as e:
        logger.debug("Normalizing %r as plain text: %s", url, e)
        return _fallback(url, rules)

    compiled = _compile(rules)
    path = _rewrite_path(parts.path, compiled)
    if rules.trim_trailing_slash:
        path = path.rstrip("/")
    path = path or "/"

    query = _filter_query(parts.query, rules)
    fragment = parts.fragment
    if fragment and any(p.search(fragment) for p in compiled.hash_patterns):
        fragment = ""

    out = f"{parts.scheme}://{parts.netloc}{path}"
    if query:
        out += f"?{query}"
    if fragment:
        out += f"#{fragment}"
    return out.lower() if rules.lowercase else out
