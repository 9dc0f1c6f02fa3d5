"""The persistent Store: whole-document get/set over the key/value table.

Every write overwrites the full document; there is no merge at write time,
so the last writer wins.
"""

import copy
import json
import logging
from typing import Any

from .document import Document
from .errors import MalformedNode
from .models import StoreEntry
from .repair import parse_document
from .settings import Settings

logger = logging.getLogger(__name__)


DATA_KEY = "readLaterData"
SETTINGS_KEY = "laterlistSettings"

DEFAULT_DATA = {
    "tabs": [
        {
            "id": "tab-1",
            "name": "Getting Started",
            "containers": [
                {
                    "id": "container-1",
                    "name": "Examples",
                    "links": [
                        {
                            "id": "link-1",
                            "title": "LaterList (repo)",
                            "url": "https://example.com/laterlist",
                        },
                        {
                            "id": "link-2",
                            "title": "MDN: WebExtensions",
                            "url": "https://developer.mozilla.org/docs/Mozilla/Add-ons/WebExtensions",
                        },
                    ],
                },
            ],
        },
    ],
    "trash": [],
}


class DocumentStore:
    """Store bound to one SQLAlchemy session (one request or one surface)."""

    def __init__(self, session):
        self.session = session

    def _decode(self, entry: StoreEntry) -> Any:
        try:
            return json.loads(entry.value)
        except ValueError as e:
            raise MalformedNode(f"stored value for {entry.key} is not valid JSON") from e

    def _read(self, key: str) -> Any:
        entry = self.session.get(StoreEntry, key)
        if entry is None:
            return None
        try:
            return self._decode(entry)
        except MalformedNode as e:
            logger.warning("%s; healing", e)
            return {}

    def _write(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        entry = self.session.get(StoreEntry, key)
        if entry is None:
            self.session.add(StoreEntry(key=key, value=payload))
        else:
            entry.value = payload
        self.session.flush()

    def get(self) -> Document:
        """Load, seeding the default document on first run and repairing as needed."""
        raw = self._read(DATA_KEY)
        if raw is None:
            logger.info("No stored document; installing defaults")
            raw = copy.deepcopy(DEFAULT_DATA)
            self._write(DATA_KEY, raw)
        document, changed = parse_document(raw)
        if changed:
            self.set(document)
        return document

    def set(self, document: Document) -> None:
        self._write(DATA_KEY, document.to_dict())

    def get_settings(self) -> Settings:
        return Settings.from_dict(self._read(SETTINGS_KEY))

    def set_settings(self, settings: Settings) -> None:
        self._write(SETTINGS_KEY, settings.to_dict())
