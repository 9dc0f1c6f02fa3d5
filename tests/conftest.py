import os
import tempfile

os.environ.setdefault(
    "LATERLIST_DB", os.path.join(tempfile.mkdtemp(prefix="laterlist-"), "test.sqlite3")
)

import pytest

from laterlist.db import SessionLocal, init_db
from laterlist.document import Document
from laterlist.repair import parse_document


@pytest.fixture
def session():
    init_db(drop=True)
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from laterlist.main import app

    init_db(drop=True)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_link(link_id, url, saved_at=1000, **extra):
    link = {"id": link_id, "title": link_id.upper(), "url": url, "savedAt": saved_at}
    link.update(extra)
    return link


@pytest.fixture
def doc() -> Document:
    """Two tabs, three containers, five links, empty trash."""
    raw = {
        "tabs": [
            {
                "id": "tab-a",
                "name": "Reading",
                "containers": [
                    {
                        "id": "c-1",
                        "name": "Inbox",
                        "links": [
                            make_link("l-1", "https://a.com/x", 100),
                            make_link("l-2", "https://a.com/x?utm_source=y", 300),
                            make_link("l-3", "https://b.com/y", 200),
                        ],
                    },
                    {"id": "c-2", "name": "Later", "links": [make_link("l-4", "https://c.com/", 400)]},
                ],
            },
            {
                "id": "tab-b",
                "name": "Work",
                "containers": [
                    {"id": "c-3", "name": "Docs", "links": [make_link("l-5", "https://A.com/x/", 500)]},
                ],
            },
        ],
        "trash": [],
    }
    document, _ = parse_document(raw)
    return document
