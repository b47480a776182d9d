import sqlite3

import pytest

from markdex import index_db
from markdex.errors import BackendError, ErrorKind, StoreUnavailable
from markdex.index_db import BookmarkIndex, build_fts_query
from markdex.model import BookmarkRecord
from markdex.tag_store import TagStore


def _mk(id: str, name: str, url: str = "", folder=None) -> BookmarkRecord:
    return BookmarkRecord(
        id=id,
        name=name,
        url=url or f"https://{id}.example/",
        date_added="13300000000000000",
        folder_path=folder,
    )


def _ids(records):
    return [r.id for r in records]


def test_replace_all_then_text_search(index):
    n = index.replace_all(
        [
            _mk("1", "Rust Lang", "https://rust-lang.org", "Root/Work/Docs"),
            _mk("2", "Example", "https://example.com", "Root/Play/Read"),
        ],
        "fp-1",
    )
    assert n == 2
    assert index.count() == 2
    assert index.needs_refresh("fp-1") is False
    assert index.needs_refresh("fp-2") is True
    assert index.fingerprint() == "fp-1"

    res = index.search_text("rust", 10)
    assert res.available is True
    assert _ids(res.records) == ["1"]

    res = index.search_text("rust-lang", 10)
    assert _ids(res.records) == ["1"]


def test_text_search_distinguishes_no_match_from_unavailable(index):
    index.replace_all([_mk("1", "Rust Lang")], "fp")
    res = index.search_text("zzzz", 10)
    assert res.available is True
    assert res.records == []

    res = index.search_text("!!! ... ?", 10)
    assert res.available is False


def test_text_search_is_unavailable_when_disabled(tmp_path):
    with BookmarkIndex(tmp_path / "i.sqlite", fts=False) as idx:
        idx.replace_all([_mk("1", "Rust Lang")], "fp")
        assert idx.fts_enabled is False
        assert idx.search_text("rust", 10).available is False
        assert idx.search_text("nomatch", 10).available is False


def test_fts_creation_failure_degrades_instead_of_failing(tmp_path, monkeypatch):
    monkeypatch.setattr(index_db, "_FTS_SCHEMA", "CREATE VIRTUAL TABLE bookmarks_fts USING no_such_module(x)")
    with BookmarkIndex(tmp_path / "i.sqlite") as idx:
        assert idx.fts_enabled is False
        assert idx.degraded is not None
        assert idx.degraded.kind == ErrorKind.INDEX_DEGRADED
        idx.replace_all([_mk("1", "Rust Lang")], "fp")
        assert _ids(idx.list(10)) == ["1"]
        assert idx.search_text("rust", 10).available is False


def test_reenabling_fts_rebuilds_projection(tmp_path):
    path = tmp_path / "i.sqlite"
    with BookmarkIndex(path, fts=False) as idx:
        idx.replace_all([_mk("1", "Rust Lang"), _mk("2", "Python")], "fp")
    with BookmarkIndex(path) as idx:
        res = idx.search_text("python", 10)
        assert res.available is True
        assert _ids(res.records) == ["2"]


def test_list_keeps_insertion_order_and_limit(index):
    index.replace_all([_mk("b", "B"), _mk("a", "A"), _mk("c", "C")], "fp")
    assert _ids(index.list(2)) == ["b", "a"]
    assert _ids(index.list(10)) == ["b", "a", "c"]
    assert index.list(0) == []
    assert _ids(index.load_all()) == ["b", "a", "c"]


def test_rows_recompute_lowercase_fields(index):
    index.replace_all([_mk("1", "Rust Lang", "https://Rust-Lang.org", "Root/Work")], "fp")
    (r,) = index.load_all()
    assert r.name_lower == "rust lang"
    assert r.url_lower == "https://rust-lang.org"
    assert r.folder_path_lower == "root/work"
    assert r.date_added == "13300000000000000"


def test_list_by_folder_hierarchy_and_partial(index):
    index.replace_all(
        [
            _mk("1", "Rust", folder="Root/Work/Project/Rust"),
            _mk("2", "Games", folder="Root/Play"),
            _mk("3", "Loose"),
        ],
        "fp",
    )
    assert _ids(index.list_by_folder(["work/project"], 10)) == ["1"]
    assert _ids(index.list_by_folder(["proj"], 10)) == ["1"]
    assert _ids(index.list_by_folder(["play"], 10)) == ["2"]
    assert _ids(index.list_by_folder(["work", "rust"], 10)) == ["1"]
    assert _ids(index.list_by_folder([" / "], 10)) == ["1", "2", "3"]
    assert index.list_by_folder(["work"], 0) == []


def test_list_by_folder_rechecks_like_candidates(index):
    index.replace_all(
        [
            _mk("1", "A", folder="Root/Work/Project"),
            _mk("2", "B", folder="Root/WorkProject"),
            _mk("3", "C", folder="Root/Work/Project/Deep"),
        ],
        "fp",
    )
    # "%work%project%" also matches "root/workproject"; the segment matcher rejects it.
    assert _ids(index.list_by_folder(["work/project"], 10)) == ["1", "3"]
    assert _ids(index.list_by_folder(["work/project"], 1)) == ["1"]


def test_list_by_folder_treats_like_wildcards_literally(index):
    index.replace_all(
        [
            _mk("1", "A", folder="Root/100%_done"),
            _mk("2", "B", folder="Root/100xxdone"),
        ],
        "fp",
    )
    assert _ids(index.list_by_folder(["100%_"], 10)) == ["1"]


def test_list_by_folder_folds_non_ascii_case(index):
    index.replace_all([_mk("1", "A", folder="Root/Ärger"), _mk("2", "B", folder="Root/Other")], "fp")
    assert _ids(index.list_by_folder(["ärger"], 10)) == ["1"]
    assert _ids(index.list_by_folder(["ÄRGER"], 10)) == ["1"]


def test_text_search_with_folder_and_tag_constraints(index):
    index.replace_all(
        [
            _mk("1", "Rust Book", folder="Root/Work/Docs"),
            _mk("2", "Rust Game", folder="Root/Play/Games"),
            _mk("3", "Rust Blog", folder="Root/Work/Blogs"),
        ],
        "fp",
    )
    res = index.search_text("rust", 10, folders=["work"])
    assert sorted(_ids(res.records)) == ["1", "3"]

    TagStore(index).add_tags("1", ["lang"])
    TagStore(index).add_tags("2", ["lang"])
    res = index.search_text("rust", 10, tags=["lang"])
    assert sorted(_ids(res.records)) == ["1", "2"]

    res = index.search_text("rust", 10, folders=["work"], tags=["lang"])
    assert _ids(res.records) == ["1"]

    res = index.search_text("rust", 10, tags=["missing"])
    assert res.available is True
    assert res.records == []


def test_list_by_tags_requires_every_tag(index):
    index.replace_all([_mk("1", "A"), _mk("2", "B"), _mk("3", "C")], "fp")
    tags = TagStore(index)
    tags.add_tags("1", ["work", "rust"])
    tags.add_tags("2", ["work"])
    tags.add_tags("3", ["rust", "work"])
    assert _ids(index.list_by_tags(["work", "rust", "work"], 10)) == ["1", "3"]
    assert _ids(index.list_by_tags(["work"], 1)) == ["1"]
    assert index.list_by_tags([], 10) == []


def test_get_by_id_or_url(index):
    index.replace_all([_mk("1", "Rust", "https://rust-lang.org")], "fp")
    assert index.get_by_id_or_url("1").name == "Rust"
    assert index.get_by_id_or_url(" https://rust-lang.org ").id == "1"
    assert index.get_by_id_or_url("2") is None
    assert index.get_by_id_or_url("  ") is None


def test_clear_forgets_records_and_fingerprint(index):
    index.replace_all([_mk("1", "Rust")], "fp-1")
    index.clear()
    assert index.count() == 0
    assert index.needs_refresh("fp-1") is True
    assert index.fingerprint() is None
    assert index.search_text("rust", 10).records == []


def test_failed_rebuild_keeps_previous_set(index):
    index.replace_all([_mk("a", "Alpha"), _mk("b", "Beta")], "fp-1")

    # Duplicate primary key aborts the rebuild halfway through.
    with pytest.raises(StoreUnavailable):
        index.replace_all([_mk("c", "Gamma"), _mk("c", "Gamma again")], "fp-2")

    assert _ids(index.list(10)) == ["a", "b"]
    assert index.needs_refresh("fp-1") is False
    assert index.needs_refresh("fp-2") is True
    assert _ids(index.search_text("alpha", 10).records) == ["a"]
    assert index.search_text("gamma", 10).records == []


def test_interrupted_rebuild_rolls_back(index):
    index.replace_all([_mk("a", "Alpha")], "fp-1")

    def records():
        yield _mk("x", "X")
        raise RuntimeError("source went away")

    with pytest.raises(RuntimeError):
        index.replace_all(records(), "fp-2")
    assert _ids(index.load_all()) == ["a"]
    assert index.fingerprint() == "fp-1"


def test_rebuild_drops_tags_of_removed_bookmarks(index):
    index.replace_all([_mk("a", "A"), _mk("b", "B")], "fp-1")
    tags = TagStore(index)
    tags.add_tags("a", ["x"])
    tags.add_tags("b", ["y"])

    index.replace_all([_mk("b", "B")], "fp-2")
    assert tags.tags_for(["a", "b"]) == {"b": ["y"]}

    # The bookmark comes back untagged.
    index.replace_all([_mk("a", "A"), _mk("b", "B")], "fp-3")
    assert tags.get_tags("a") == []


def test_rebuild_without_tagging_still_drops_orphaned_tags(tmp_path):
    path = tmp_path / "i.sqlite"
    with BookmarkIndex(path) as idx:
        idx.replace_all([_mk("a", "A"), _mk("b", "B")], "fp-1")
        TagStore(idx).add_tags("a", ["x"])

    with BookmarkIndex(path, tagging=False) as idx:
        idx.replace_all([_mk("b", "B")], "fp-2")

    with BookmarkIndex(path) as idx:
        idx.replace_all([_mk("a", "A"), _mk("b", "B")], "fp-3")
        assert TagStore(idx).tags_for(["a", "b"]) == {}


def test_write_lock_timeout_raises_store_unavailable(tmp_path):
    path = tmp_path / "i.sqlite"
    with BookmarkIndex(path, busy_timeout_ms=50) as idx:
        other = sqlite3.connect(str(path), isolation_level=None)
        try:
            other.execute("BEGIN IMMEDIATE")
            with pytest.raises(StoreUnavailable) as ei:
                idx.replace_all([_mk("1", "A")], "fp")
            assert ei.value.kind == ErrorKind.STORE_UNAVAILABLE
        finally:
            other.execute("ROLLBACK")
            other.close()
        assert idx.count() == 0


class _LockedConnection:
    def execute(self, *_args, **_kwargs):
        raise sqlite3.OperationalError("database is locked")


def test_locked_read_raises_store_unavailable(index):
    index.replace_all([_mk("1", "A")], "fp")
    real, index.conn = index.conn, _LockedConnection()
    try:
        with pytest.raises(StoreUnavailable):
            index.count()
        with pytest.raises(StoreUnavailable):
            index.search_text("a", 10)
    finally:
        index.conn = real


def test_undecodable_row_raises_backend_error(index):
    with pytest.raises(BackendError):
        list(index._records("SELECT 1 AS id"))


def test_open_failure_raises_store_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(StoreUnavailable):
        BookmarkIndex(blocker / "index.sqlite").open()


def test_closed_index_raises_store_unavailable(tmp_path):
    idx = BookmarkIndex(tmp_path / "i.sqlite")
    with pytest.raises(StoreUnavailable):
        idx.count()


def test_build_fts_query_quotes_prefix_terms():
    assert build_fts_query("rust lang") == '"rust"* "lang"*'
    assert build_fts_query('rust-lang.org "x') == '"rust-lang.org"* "x"*'
    assert build_fts_query("  ") is None
    assert build_fts_query("-- ..") is None
