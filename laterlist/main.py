from fastapi import FastAPI, Depends, UploadFile, Form, Body, HTTPException
from fastapi.responses import Response
from datetime import date
from typing import Optional, List
import asyncio
import logging
import os

from .db import get_session, init_db
from .document import now_ms
from .duplicates import find_duplicate_groups
from .errors import InvalidImportFormat
from .extract import MarkupMetadataExtractor
from .importer import export_json, import_json, import_onetab
from .operations import (
    LinkLocation,
    LinkRef,
    add_link,
    archive_link,
    bulk_move_selected,
    bulk_trash_selected,
    create_container,
    create_tab,
    delete_container,
    delete_tab,
    edit_link,
    empty_trash,
    move_container,
    move_link,
    move_link_to_trash,
    open_link,
    purge_link,
    rename_container,
    rename_tab,
    resolve_group_to_keep,
    restore_link,
    save_all_tabs,
    toggle_lock,
)
from .repair import parse_document
from .settings import Settings
from .store import DocumentStore


logging.basicConfig(
    level=os.environ.get("LATERLIST_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="LaterList")

# Create DB tables on startup
init_db()


def get_extractor() -> MarkupMetadataExtractor:
    return MarkupMetadataExtractor()


# Helpers
def load(session):
    store = DocumentStore(session)
    return store, store.get()


def parse_keys(keys: str) -> List[LinkRef]:
    refs = [LinkRef.parse(k) for k in keys.split(",") if k.strip()]
    return [r for r in refs if r is not None]


def link_metadata(payload: dict) -> dict:
    return {k: payload[k] for k in ("imageUrl", "imageUrls", "publishedAt", "description", "summary", "keywords") if k in payload}


# Whole document
@app.get("/api/data")
def get_data(session=Depends(get_session)):
    _, doc = load(session)
    return doc.to_dict()


@app.put("/api/data")
def set_data(payload: dict = Body(...), session=Depends(get_session)):
    """Replace the whole document (last writer wins)."""
    doc, _ = parse_document(payload)
    DocumentStore(session).set(doc)
    return {"ok": True, "data": doc.to_dict()}


# Tab CRUD
@app.post("/tabs/create")
def create_tab_route(name: str = Form(...), session=Depends(get_session)):
    store, doc = load(session)
    tab = create_tab(doc, name)
    store.set(doc)
    return {"ok": True, "tab": tab.to_dict()}


@app.post("/tabs/rename/{tab_id}")
def rename_tab_route(tab_id: str, name: str = Form(...), session=Depends(get_session)):
    store, doc = load(session)
    ok = rename_tab(doc, tab_id, name)
    if ok:
        store.set(doc)
    return {"ok": ok}


@app.post("/tabs/delete/{tab_id}")
def delete_tab_route(tab_id: str, session=Depends(get_session)):
    store, doc = load(session)
    trashed = delete_tab(doc, tab_id)
    if trashed is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "trashed": len(trashed)}


# Container CRUD
@app.post("/containers/create/{tab_id}")
def create_container_route(tab_id: str, name: str = Form(...), session=Depends(get_session)):
    store, doc = load(session)
    container = create_container(doc, tab_id, name)
    if container is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "container": container.to_dict()}


@app.post("/containers/rename/{tab_id}/{container_id}")
def rename_container_route(tab_id: str, container_id: str, name: str = Form(...), session=Depends(get_session)):
    store, doc = load(session)
    ok = rename_container(doc, tab_id, container_id, name)
    if ok:
        store.set(doc)
    return {"ok": ok}


@app.post("/containers/delete/{tab_id}/{container_id}")
def delete_container_route(tab_id: str, container_id: str, session=Depends(get_session)):
    store, doc = load(session)
    trashed = delete_container(doc, tab_id, container_id)
    if trashed is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "trashed": len(trashed)}


@app.post("/containers/move")
def move_container_route(
    from_tab_id: str = Form(...),
    old_index: int = Form(...),
    to_tab_id: str = Form(...),
    new_index: int = Form(...),
    session=Depends(get_session),
):
    store, doc = load(session)
    ok = move_container(doc, from_tab_id, old_index, to_tab_id, new_index)
    if ok:
        store.set(doc)
    return {"ok": ok}


# Link CRUD
@app.post("/links/create")
def create_link(payload: dict = Body(...), session=Depends(get_session)):
    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise HTTPException(status_code=400, detail="url is required")
    store, doc = load(session)
    link = add_link(
        doc,
        url,
        title=payload.get("title"),
        tab_id=payload.get("tabId"),
        container_id=payload.get("containerId"),
        metadata=link_metadata(payload),
    )
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/links/extract_and_create")
def extract_and_create_link(
    payload: dict = Body(...),
    session=Depends(get_session),
    extractor: MarkupMetadataExtractor = Depends(get_extractor),
):
    """Save a page that is not open in the browser, scraping its markup first.

    Runs in the worker pool; the scrape gets its own event loop there.
    """
    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise HTTPException(status_code=400, detail="url is required")
    metadata = asyncio.run(extractor.extract(url.strip()))
    store, doc = load(session)
    link = add_link(
        doc,
        url,
        title=payload.get("title"),
        tab_id=payload.get("tabId"),
        container_id=payload.get("containerId"),
        metadata=metadata.to_link_metadata(),
    )
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/links/edit/{tab_id}/{container_id}/{link_id}")
def edit_link_route(
    tab_id: str,
    container_id: str,
    link_id: str,
    title: Optional[str] = Form(None),
    url: Optional[str] = Form(None),
    session=Depends(get_session),
):
    store, doc = load(session)
    ok = edit_link(doc, tab_id, container_id, link_id, title=title, url=url)
    if ok:
        store.set(doc)
    return {"ok": ok}


@app.post("/links/lock/{tab_id}/{container_id}/{link_id}")
def lock_link_route(tab_id: str, container_id: str, link_id: str, session=Depends(get_session)):
    store, doc = load(session)
    locked = toggle_lock(doc, tab_id, container_id, link_id)
    if locked is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "locked": locked}


@app.post("/links/trash/{tab_id}/{container_id}/{link_id}")
def trash_link_route(tab_id: str, container_id: str, link_id: str, session=Depends(get_session)):
    store, doc = load(session)
    link = move_link_to_trash(doc, tab_id, container_id, link_id)
    if link is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/links/open/{tab_id}/{container_id}/{link_id}")
def open_link_route(
    tab_id: str,
    container_id: str,
    link_id: str,
    archive: bool = Form(False),
    session=Depends(get_session),
):
    """Called after the surface opened the link; locked links stay put."""
    store, doc = load(session)
    link = open_link(doc, tab_id, container_id, link_id, archive=archive)
    if link is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/links/archive/{tab_id}/{container_id}/{link_id}")
def archive_link_route(tab_id: str, container_id: str, link_id: str, session=Depends(get_session)):
    store, doc = load(session)
    link = archive_link(doc, tab_id, container_id, link_id)
    if link is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/links/move")
def move_link_route(
    link_id: str = Form(...),
    from_tab_id: str = Form(...),
    from_container_id: str = Form(...),
    old_index: int = Form(...),
    to_tab_id: str = Form(...),
    to_container_id: str = Form(...),
    new_index: int = Form(...),
    session=Depends(get_session),
):
    store, doc = load(session)
    ok = move_link(
        doc,
        link_id,
        LinkLocation(from_tab_id, from_container_id, old_index),
        LinkLocation(to_tab_id, to_container_id, new_index),
    )
    if ok:
        store.set(doc)
    return {"ok": ok}


@app.post("/links/bulk_trash")
def bulk_trash(keys: str = Form(...), session=Depends(get_session)):
    store, doc = load(session)
    trashed = bulk_trash_selected(doc, parse_keys(keys))
    if trashed:
        store.set(doc)
    return {"ok": bool(trashed), "trashed": len(trashed)}


@app.post("/links/bulk_move")
def bulk_move(
    keys: str = Form(...),
    target_tab_id: str = Form(...),
    target_container_id: str = Form(...),
    session=Depends(get_session),
):
    store, doc = load(session)
    moved = bulk_move_selected(doc, parse_keys(keys), target_tab_id, target_container_id)
    if moved:
        store.set(doc)
    return {"ok": bool(moved), "moved": moved}


@app.post("/links/save_all")
def save_all(pages: List[dict] = Body(...), session=Depends(get_session)):
    """Save every open page into one new date-named container."""
    store, doc = load(session)
    container = save_all_tabs(doc, pages, store.get_settings())
    if container is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "container": container.to_dict()}


# Trash
@app.post("/trash/restore/{link_id}")
def restore_link_route(link_id: str, session=Depends(get_session)):
    store, doc = load(session)
    link = restore_link(doc, link_id)
    if link is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True, "link": link.to_dict()}


@app.post("/trash/delete/{link_id}")
def purge_link_route(link_id: str, session=Depends(get_session)):
    store, doc = load(session)
    link = purge_link(doc, link_id)
    if link is None:
        return {"ok": False}
    store.set(doc)
    return {"ok": True}


@app.post("/trash/empty")
def empty_trash_route(session=Depends(get_session)):
    store, doc = load(session)
    purged = empty_trash(doc)
    store.set(doc)
    return {"ok": True, "purged": purged}


# Duplicates
@app.get("/duplicates")
def view_duplicates(aggressive: Optional[bool] = None, session=Depends(get_session)):
    store, doc = load(session)
    rules = store.get_settings().cleanup_rules
    groups = find_duplicate_groups(doc, rules, aggressive=aggressive)
    return {"groups": [g.to_dict() for g in groups]}


@app.post("/duplicates/resolve")
def resolve_duplicates(
    key: str = Form(...),
    strategy: str = Form("newest"),
    aggressive: Optional[bool] = Form(None),
    session=Depends(get_session),
):
    store, doc = load(session)
    rules = store.get_settings().cleanup_rules
    # Regroup against the live document; the caller's view may be stale.
    groups = find_duplicate_groups(doc, rules, aggressive=aggressive)
    group = next((g for g in groups if g.normalized_key == key), None)
    if group is None:
        return {"ok": False, "trashed": 0}
    trashed = resolve_group_to_keep(doc, group, strategy)
    if trashed:
        store.set(doc)
    return {"ok": bool(trashed), "trashed": len(trashed)}


# Import & Export
@app.post("/import_json")
def import_json_route(file: UploadFile, mode: str = "merge", session=Depends(get_session)):
    if mode not in ("merge", "replace"):
        raise HTTPException(status_code=400, detail=f"Unknown import mode: {mode}")
    text = file.file.read().decode("utf-8", errors="ignore")
    store, doc = load(session)
    try:
        result = import_json(doc, text, mode=mode)
    except InvalidImportFormat as e:
        raise HTTPException(status_code=400, detail=str(e))
    store.set(result.document)
    return {"ok": True, "mode": result.mode, "tabs": result.tabs_imported, "trash": result.trash_imported}


@app.post("/import_onetab")
def import_onetab_route(file: UploadFile, session=Depends(get_session)):
    text = file.file.read().decode("utf-8", errors="ignore")
    store, doc = load(session)
    result = import_onetab(doc, text)
    store.set(doc)
    return {"ok": True, "links": result.links_imported, "containers": result.containers_created}


@app.get("/export.json")
def export_json_route(session=Depends(get_session)):
    _, doc = load(session)
    filename = f"laterlist-backup-{date.today().isoformat()}.json"
    return Response(
        export_json(doc),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Settings
@app.get("/settings")
def get_settings(session=Depends(get_session)):
    return DocumentStore(session).get_settings().to_dict()


@app.post("/settings")
def update_settings(payload: dict = Body(...), session=Depends(get_session)):
    store = DocumentStore(session)
    current = store.get_settings().to_dict()
    for key in ("containerNameFormat", "sendAllTabsDestination"):
        if key in payload:
            current[key] = payload[key]
    if isinstance(payload.get("cleanupRules"), dict):
        current["cleanupRules"].update(payload["cleanupRules"])
    settings = Settings.from_dict(current)
    store.set_settings(settings)
    return settings.to_dict()


# Metadata
@app.get("/extract")
async def extract_metadata(url: str, extractor: MarkupMetadataExtractor = Depends(get_extractor)):
    """Scraped metadata for a URL; failures come back as empty metadata."""
    metadata = await extractor.extract(url)
    return {"url": url, "fetchedAt": now_ms(), **metadata.to_link_metadata()}
