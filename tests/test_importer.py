import json

import pytest

from laterlist.document import Document
from laterlist.errors import InvalidImportFormat
from laterlist.importer import export_json, import_json, import_onetab, parse_onetab
from laterlist.repair import repair


def test_onetab_scenario():
    document = Document()
    text = "https://a.com | Title A\nhttps://b.com | Title B\n\nhttps://c.com | Title C"
    result = import_onetab(document, text)
    assert (result.links_imported, result.containers_created) == (3, 2)
    assert document.tabs[0].name == "Imported from OneTab"
    first, second = document.tabs[0].containers
    assert [l.title for l in first.links] == ["Title A", "Title B"]
    assert [l.title for l in second.links] == ["Title C"]
    assert (first.name, second.name) == ("Imported Group 1", "Imported Group 2")


def test_onetab_appends_to_existing_first_tab(doc):
    result = import_onetab(doc, "https://z.com | Z", now=77)
    assert result.containers_created == 1
    container = doc.tabs[0].containers[-1]
    assert container.links[0].saved_at == 77
    assert container.id not in {"c-1", "c-2", "c-3"}
    assert repair(doc.to_dict()) is False


def test_onetab_line_handling():
    text = "\n".join([
        "https://a.com/page | Nice {category:news,tags:[x]}",
        "(Archived)",
        "http://localhost:3000 | Dev",
        "https://bare.example.org/path",
        "not a url | Broken",
        "https://pipe.com/a|b | Keeps | inner pipes",
        "https://empty-title.com |  {category:x}",
    ])
    (entries,) = parse_onetab(text)
    assert entries == [
        ("https://a.com/page", "Nice"),
        ("https://bare.example.org/path", "bare.example.org"),
        ("https://pipe.com/a|b", "Keeps | inner pipes"),
        ("https://empty-title.com", "empty-title.com"),
    ]


def test_onetab_groups_with_nothing_usable_make_no_container():
    document = Document()
    text = "(Archived)\n\nhttps://ok.com | OK\n\n\n   \nnope"
    result = import_onetab(document, text)
    assert result.containers_created == 1
    assert document.tabs[0].containers[0].name == "Imported Group 2"


def test_onetab_with_crlf():
    document = Document()
    result = import_onetab(document, "https://a.com | A\r\n\r\nhttps://b.com | B\r\n")
    assert result.containers_created == 2


def test_onetab_empty_input_changes_nothing():
    document = Document()
    assert import_onetab(document, "").links_imported == 0
    assert document.tabs == []


def test_json_merge_id_collision(doc):
    incoming = {
        "tabs": [{"id": "tab-a", "name": "Imported", "containers": [
            {"id": "c-1", "name": "Imp", "links": [{"id": "l-1", "title": "T", "url": "https://t.com"}]},
            {"id": "c-new", "name": "Other", "links": []},
        ]}],
        "trash": [{"id": "gone", "title": "G", "url": "https://g.com", "savedAt": 1, "deletedAt": 5}],
    }
    result = import_json(doc, json.dumps(incoming), mode="merge")
    merged = result.document
    assert result.mode == "merge"
    assert len(merged.tabs) == 3
    assert merged.tabs[0].id == "tab-a"
    imported = merged.tabs[2]
    assert imported.id != "tab-a"
    assert imported.name == "Imported"
    assert [c.name for c in imported.containers] == ["Imp", "Other"]
    assert imported.containers[0].id != "c-1"
    assert imported.containers[0].links[0].id != "l-1"
    assert merged.tabs[0].containers[0].links[0].id == "l-1"
    assert [l.id for l in merged.trash] == ["gone"]
    # original untouched
    assert len(doc.tabs) == 2


def test_json_replace(doc):
    incoming = {"tabs": [{"name": "Only"}]}
    result = import_json(doc, json.dumps(incoming), mode="replace")
    assert [t.name for t in result.document.tabs] == ["Only"]
    assert result.document.tabs[0].id
    assert result.document.trash == []


@pytest.mark.parametrize("payload", ["{not json", "[]", '{"tabs": {}}', '{"trash": []}', "null"])
def test_json_rejects_bad_shapes(doc, payload):
    with pytest.raises(InvalidImportFormat):
        import_json(doc, payload)


def test_json_unknown_mode(doc):
    with pytest.raises(ValueError):
        import_json(doc, '{"tabs": []}', mode="append")


def test_export_round_trips_through_replace(doc):
    doc.tabs[0].containers[0].links[0].keywords = ["x"]
    doc.tabs[0].containers[0].links[0].locked = True
    text = export_json(doc)
    assert text.startswith("{\n  ")
    restored = import_json(Document(), text, mode="replace").document
    assert restored.to_dict() == doc.to_dict()


def test_export_round_trips_through_merge_into_empty(doc):
    merged = import_json(Document(), export_json(doc), mode="merge").document
    assert merged.to_dict() == doc.to_dict()
