"""Error taxonomy for the document core.

Only ``InvalidImportFormat`` escapes to callers; the rest are absorbed at the
boundary where they occur so the document always stays renderable. A stale
tab, container or link id is not an error at all: operations return
``None``/``False``/``0`` for it.
"""


class LaterListError(Exception):
    """Base class for all LaterList errors."""


class MalformedNode(LaterListError):
    """A stored fragment failed its shape contract (healed by repair)."""


class InvalidImportFormat(LaterListError):
    """Import payload is missing its required top-level shape."""


class ExtractionFailure(LaterListError):
    """Metadata probing failed (network, parse or timeout)."""


class NormalizationFailure(LaterListError):
    """A URL could not be parsed for normalization."""
