"""LaterList: link curation store with schema repair, dedup and import."""

__version__ = "0.3.0"
