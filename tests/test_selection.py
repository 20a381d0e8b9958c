"""Unit tests for dms.documents.selection — token parsing and link resolution."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from dms.documents.selection import Selection, SelectionItem, SelectionKind, parse_selection


class TestSelectionItem:
    @pytest.mark.parametrize("token, kind, item_id", [
        ("folder-3", SelectionKind.FOLDER, 3),
        ("file-7", SelectionKind.FILE, 7),
        ("folder-link-9", SelectionKind.FOLDER_LINK, 9),
        ("file-link-11", SelectionKind.FILE_LINK, 11),
        ("url-link-12", SelectionKind.URL_LINK, 12),
        (" file-1 ", SelectionKind.FILE, 1),
    ])
    def test_parse(self, token, kind, item_id):
        item = SelectionItem.parse(token)
        assert item.kind == kind
        assert item.id == item_id

    @pytest.mark.parametrize("token", ["", "folder", "folder-", "link-3", "file-x", "file--1", None, 3])
    def test_parse_invalid(self, token):
        assert SelectionItem.parse(token) is None

    def test_str(self):
        assert str(SelectionItem(SelectionKind.FOLDER_LINK, 9)) == "folder-link-9"


class TestParseSelection:
    def test_groups_by_kind(self):
        sel = parse_selection(["folder-3", "file-7", "folder-link-9", "file-link-11", "url-link-12"])
        assert sel.folders == [3]
        assert sel.files == [7]
        assert sel.folder_links == [9]
        assert sel.file_links == [11]
        assert sel.url_links == [12]
        assert sel.links == [9, 11, 12]

    def test_deduplicates_in_order(self):
        sel = parse_selection(["file-7", "file-2", "file-7"])
        assert sel.files == [7, 2]

    def test_unknown_tokens_ignored(self):
        sel = parse_selection(["bogus", "folder-1", "revision-4"])
        assert sel.folders == [1]
        assert sel.files == []

    def test_empty(self):
        assert parse_selection([]).is_empty()
        assert parse_selection(None).is_empty()
        assert parse_selection(["nope"]).is_empty()
        assert not parse_selection(["url-link-1"]).is_empty()


class TestResolveLinkTargets:
    def test_merges_targets(self):
        links = {
            9: SimpleNamespace(target_id=3),
            11: SimpleNamespace(target_id=8),
        }
        store = MagicMock()
        store.get_link.side_effect = links.get

        sel = parse_selection(["folder-3", "file-7", "folder-link-9", "file-link-11"])
        sel.resolve_link_targets(store)
        assert sel.folders == [3]
        assert sel.files == [7, 8]

    def test_missing_links_skipped(self):
        store = MagicMock()
        store.get_link.return_value = None
        sel = Selection(folder_links=[1], file_links=[2])
        sel.resolve_link_targets(store)
        assert sel.folders == []
        assert sel.files == []

    def test_url_links_not_dereferenced(self):
        store = MagicMock()
        sel = parse_selection(["url-link-5"])
        sel.resolve_link_targets(store)
        store.get_link.assert_not_called()
        assert sel.url_links == [5]
