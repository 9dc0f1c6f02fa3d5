from datetime import datetime

from laterlist.document import Document, Link
from laterlist.duplicates import find_duplicate_groups
from laterlist.operations import (
    ARCHIVE_CONTAINER_NAME,
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
    ensure_default_destination,
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
from laterlist.repair import parse_document, repair
from laterlist.settings import Settings


def link_ids(container):
    return [l.id for l in container.links]


def reachable(document):
    ids = [l.id for _, _, l in document.iter_links()] + [l.id for l in document.trash]
    return ids


def assert_consistent(document):
    ids = reachable(document)
    assert len(ids) == len(set(ids))
    assert repair(document.to_dict()) is False


def test_create_and_rename_tab(doc):
    tab = create_tab(doc, "  Fresh ")
    assert doc.tabs[-1] is tab
    assert tab.name == "Fresh"
    assert tab.id not in {"tab-a", "tab-b"}
    assert rename_tab(doc, tab.id, "Renamed") is True
    assert tab.name == "Renamed"
    assert rename_tab(doc, tab.id, "   ") is False
    assert rename_tab(doc, "missing", "x") is False


def test_delete_tab_cascades_to_trash(doc):
    trashed = delete_tab(doc, "tab-a", now=9000)
    assert [l.id for l in trashed] == ["l-1", "l-2", "l-3", "l-4"]
    assert doc.find_tab("tab-a") is None
    assert len(doc.trash) == 4
    assert all(l.deleted_at == 9000 for l in doc.trash)
    assert_consistent(doc)


def test_delete_last_tab_is_allowed(doc):
    delete_tab(doc, "tab-a")
    delete_tab(doc, "tab-b")
    assert doc.tabs == []
    assert len(doc.trash) == 5
    assert delete_tab(doc, "tab-b") is None


def test_containers(doc):
    container = create_container(doc, "tab-a", "Top")
    assert doc.tabs[0].containers[0] is container
    assert create_container(doc, "missing", "x") is None
    assert rename_container(doc, "tab-a", container.id, "Renamed") is True
    assert container.name == "Renamed"
    assert rename_container(doc, "tab-b", container.id, "x") is False

    trashed = delete_container(doc, "tab-a", "c-1", now=7)
    assert [l.id for l in trashed] == ["l-1", "l-2", "l-3"]
    assert doc.find_container("tab-a", "c-1") is None
    assert delete_container(doc, "tab-a", "c-1") is None
    assert_consistent(doc)


def test_move_container_between_tabs(doc):
    assert move_container(doc, "tab-a", 1, "tab-b", 0) is True
    assert [c.id for c in doc.tabs[0].containers] == ["c-1"]
    assert [c.id for c in doc.tabs[1].containers] == ["c-2", "c-3"]
    assert link_ids(doc.tabs[1].containers[0]) == ["l-4"]
    assert move_container(doc, "tab-b", 0, "tab-b", 0) is False
    assert move_container(doc, "tab-b", 5, "tab-a", 0) is False


def test_add_link_to_explicit_destination(doc):
    link = add_link(
        doc, " https://new.com ", title=None, tab_id="tab-b", container_id="c-3",
        metadata={"imageUrl": "https://new.com/i.png", "keywords": ["k"], "bogus": 1, "summary": None},
        now=42,
    )
    assert doc.tabs[1].containers[0].links[-1] is link
    assert link.url == "https://new.com"
    assert link.title == "https://new.com"
    assert link.saved_at == 42
    assert link.image_url == "https://new.com/i.png"
    assert link.keywords == ["k"]
    assert link.summary is None
    assert "bogus" not in link.to_dict()


def test_add_link_keeps_wrong_typed_metadata_for_repair_to_drop(doc):
    link = add_link(
        doc, "https://z.com", tab_id="tab-b", container_id="c-3",
        metadata={"imageUrls": "https://img/x.png", "keywords": "ab", "description": "ok"},
    )
    stored = link.to_dict()
    assert stored["imageUrls"] == "https://img/x.png"
    assert stored["keywords"] == "ab"

    assert repair(doc.to_dict()) is True
    reloaded = parse_document(doc.to_dict())[0].find_link("tab-b", "c-3", link.id)
    assert reloaded.image_urls is None
    assert reloaded.keywords is None
    assert reloaded.description == "ok"


def test_add_link_falls_back_to_first_tab_and_container(doc):
    link = add_link(doc, "https://x.com", "X", tab_id="nope", container_id="nope")
    assert doc.tabs[0].containers[0].links[-1] is link

    link = add_link(doc, "https://y.com", "Y", tab_id="tab-b", container_id="nope")
    assert doc.tabs[1].containers[0].links[-1] is link


def test_add_link_synthesizes_destination():
    document = Document()
    link = add_link(document, "https://x.com", "X")
    assert len(document.tabs) == 1
    assert document.tabs[0].name == "Saved"
    assert document.tabs[0].containers[0].name == "Links"
    assert document.tabs[0].containers[0].links == [link]


def test_add_link_creates_container_in_empty_tab(doc):
    tab = create_tab(doc, "Empty")
    link = add_link(doc, "https://x.com", tab_id=tab.id)
    assert len(tab.containers) == 1
    assert tab.containers[0].links == [link]


def test_add_link_ids_are_unique(doc):
    ids = {add_link(doc, f"https://{i}.com").id for i in range(50)}
    assert len(ids) == 50
    assert_consistent(doc)


def test_edit_and_lock(doc):
    assert edit_link(doc, "tab-a", "c-1", "l-1", title=" New ", url=None) is True
    link = doc.find_link("tab-a", "c-1", "l-1")
    assert link.title == "New"
    assert link.url == "https://a.com/x"
    assert edit_link(doc, "tab-a", "c-2", "l-1", title="x") is False

    assert toggle_lock(doc, "tab-a", "c-1", "l-1") is True
    assert toggle_lock(doc, "tab-a", "c-1", "l-1") is False
    assert toggle_lock(doc, "tab-a", "c-1", "missing") is None


def test_trash_and_restore_round_trip(doc):
    removed = move_link_to_trash(doc, "tab-a", "c-1", "l-2", now=123)
    assert removed.id == "l-2"
    assert removed.deleted_at == 123
    assert link_ids(doc.tabs[0].containers[0]) == ["l-1", "l-3"]
    assert doc.trash == [removed]

    # stale id: no-op, not an error
    assert move_link_to_trash(doc, "tab-a", "c-1", "l-2") is None

    restored = restore_link(doc, "l-2")
    assert restored is removed
    assert restored.deleted_at is None
    assert "deletedAt" not in restored.to_dict()
    assert doc.trash == []
    assert doc.tabs[0].containers[0].links[-1] is restored
    assert restore_link(doc, "l-2") is None
    assert_consistent(doc)


def test_trash_sorted_newest_first(doc):
    move_link_to_trash(doc, "tab-a", "c-1", "l-1", now=10)
    move_link_to_trash(doc, "tab-a", "c-1", "l-2", now=30)
    doc.trash.append(Link(id="legacy", title="L", url="", saved_at=1))
    move_link_to_trash(doc, "tab-a", "c-1", "l-3", now=20)
    assert [l.id for l in doc.trash] == ["l-2", "l-3", "l-1", "legacy"]


def test_restore_creates_restored_container():
    document = Document()
    add_link(document, "https://x.com")
    tab = document.tabs[0]
    link_id = tab.containers[0].links[0].id
    move_link_to_trash(document, tab.id, tab.containers[0].id, link_id)
    delete_container(document, tab.id, tab.containers[0].id)

    restored = restore_link(document, link_id)
    assert tab.containers[0].name == "Restored"
    assert tab.containers[0].links == [restored]


def test_restore_with_no_tabs_synthesizes_destination(doc):
    delete_tab(doc, "tab-a")
    delete_tab(doc, "tab-b")
    restored = restore_link(doc, "l-5")
    assert len(doc.tabs) == 1
    assert doc.tabs[0].containers[0].links == [restored]


def test_purge_and_empty(doc):
    bulk_trash_selected(doc, [LinkRef("tab-a", "c-1", "l-1"), LinkRef("tab-a", "c-1", "l-2")])
    assert purge_link(doc, "l-1").id == "l-1"
    assert purge_link(doc, "l-1") is None
    assert [l.id for l in doc.trash] == ["l-2"]
    assert empty_trash(doc) == 1
    assert doc.trash == []
    assert "l-1" not in reachable(doc)


def test_move_link_within_container(doc):
    ok = move_link(doc, "l-1", LinkLocation("tab-a", "c-1", 0), LinkLocation("tab-a", "c-1", 2))
    assert ok is True
    assert link_ids(doc.tabs[0].containers[0]) == ["l-2", "l-3", "l-1"]


def test_move_link_across_tabs(doc):
    ok = move_link(doc, "l-3", LinkLocation("tab-a", "c-1", 2), LinkLocation("tab-b", "c-3", 0))
    assert ok is True
    assert link_ids(doc.tabs[1].containers[0]) == ["l-3", "l-5"]
    assert_consistent(doc)


def test_move_link_noop_and_stale_index(doc):
    assert move_link(doc, "l-2", LinkLocation("tab-a", "c-1", 1), LinkLocation("tab-a", "c-1", 1)) is False
    # recorded index is stale; link is found by id
    assert move_link(doc, "l-3", LinkLocation("tab-a", "c-1", 0), LinkLocation("tab-a", "c-2", 5)) is True
    assert link_ids(doc.tabs[0].containers[1]) == ["l-4", "l-3"]
    assert move_link(doc, "gone", LinkLocation("tab-a", "c-1", 0), LinkLocation("tab-a", "c-2", 0)) is False
    assert move_link(doc, "l-1", LinkLocation("tab-a", "c-1", 0), LinkLocation("nope", "c-2", 0)) is False


def test_bulk_move_across_containers(doc):
    selection = [
        LinkRef("tab-a", "c-1", "l-1"),
        LinkRef("tab-a", "c-1", "l-3"),
        LinkRef("tab-b", "c-3", "l-5"),
        LinkRef("tab-a", "c-1", "missing"),
    ]
    assert bulk_move_selected(doc, selection, "tab-a", "c-2") == 3
    assert link_ids(doc.tabs[0].containers[1]) == ["l-4", "l-1", "l-3", "l-5"]
    assert link_ids(doc.tabs[0].containers[0]) == ["l-2"]
    assert bulk_move_selected(doc, selection, "tab-a", "nope") == 0
    assert_consistent(doc)


def test_bulk_trash_resolves_each_link_fresh(doc):
    selection = [LinkRef("tab-a", "c-1", i) for i in ("l-1", "l-2", "l-3")] + [LinkRef("tab-b", "c-3", "l-5")]
    trashed = bulk_trash_selected(doc, selection, now=5)
    assert [l.id for l in trashed] == ["l-1", "l-2", "l-3", "l-5"]
    assert doc.tabs[0].containers[0].links == []
    assert len(doc.trash) == 4
    assert bulk_trash_selected(doc, selection) == []


def test_link_ref_parse():
    assert LinkRef.parse("t|c|l") == LinkRef("t", "c", "l")
    assert LinkRef.parse("t|c") is None
    assert LinkRef.parse("t||l") is None


def test_archive_link(doc):
    link = archive_link(doc, "tab-b", "c-3", "l-5")
    archive = doc.tabs[0].containers[-1]
    assert archive.name == ARCHIVE_CONTAINER_NAME
    assert archive.links == [link]
    archive_link(doc, "tab-a", "c-1", "l-1")
    assert [c.name for c in doc.tabs[0].containers].count(ARCHIVE_CONTAINER_NAME) == 1
    assert archive_link(doc, "tab-a", "c-1", "l-1") is None


def test_open_link_respects_lock(doc):
    toggle_lock(doc, "tab-a", "c-1", "l-1")
    assert open_link(doc, "tab-a", "c-1", "l-1") is None
    assert doc.find_link("tab-a", "c-1", "l-1") is not None

    opened = open_link(doc, "tab-a", "c-1", "l-2", now=77)
    assert opened.deleted_at == 77
    assert doc.trash == [opened]

    archived = open_link(doc, "tab-a", "c-1", "l-3", archive=True)
    assert archived.deleted_at is None
    assert doc.tabs[0].containers[-1].links == [archived]


def test_resolve_group_keeps_newest(doc):
    group = find_duplicate_groups(doc, aggressive=True)[0]
    trashed = resolve_group_to_keep(doc, group, "newest", now=1)
    assert sorted(l.id for l in trashed) == ["l-1", "l-2"]
    assert doc.find_link("tab-b", "c-3", "l-5") is not None
    assert find_duplicate_groups(doc, aggressive=True) == []


def test_resolve_group_keeps_oldest(doc):
    group = find_duplicate_groups(doc, aggressive=True)[0]
    trashed = resolve_group_to_keep(doc, group, "oldest")
    assert sorted(l.id for l in trashed) == ["l-2", "l-5"]
    assert doc.find_link("tab-a", "c-1", "l-1") is not None


def test_resolve_ties_keep_first(doc):
    for _, _, link in doc.iter_links():
        link.saved_at = 1
    group = find_duplicate_groups(doc, aggressive=True)[0]
    resolve_group_to_keep(doc, group, "newest")
    assert doc.find_link("tab-a", "c-1", "l-1") is not None
    assert doc.find_link("tab-a", "c-1", "l-2") is None


def test_resolve_with_stale_group_is_harmless(doc):
    group = find_duplicate_groups(doc, aggressive=True)[0]
    resolve_group_to_keep(doc, group)
    assert resolve_group_to_keep(doc, group) == []


def test_ensure_default_destination_reuses_existing(doc):
    tab, container = ensure_default_destination(doc)
    assert (tab.id, container.id) == ("tab-a", "c-1")


def test_save_all_tabs(doc):
    when = datetime(2026, 10, 18, 9, 5)
    settings = Settings(container_name_format="YYYY-MM-DD HHmm", send_all_tabs_destination="tab-b")
    pages = [{"url": "https://p.com", "title": "P"}, {"url": ""}, {"url": "https://q.com"}, "junk"]
    container = save_all_tabs(doc, pages, settings, when=when)
    assert doc.tabs[1].containers[0] is container
    assert container.name == "2026-10-18 0905"
    assert [(l.url, l.title) for l in container.links] == [("https://p.com", "P"), ("https://q.com", "https://q.com")]
    assert_consistent(doc)


def test_save_all_tabs_defaults(doc):
    container = save_all_tabs(doc, [{"url": "https://p.com"}], Settings(send_all_tabs_destination="gone"))
    assert doc.tabs[0].containers[0] is container
    assert save_all_tabs(doc, []) is None
