import pytest

from markdex import ranking
from markdex.model import BookmarkRecord
from markdex.ranking import RankedHit, TopK, compare_hits, exact_score, fuzzy_match, fuzzy_score, rank


def _bm(id: str, name: str, url: str = "", folder=None) -> BookmarkRecord:
    return BookmarkRecord(id=id, name=name, url=url or f"https://{id}.example/", folder_path=folder)


def test_exact_search_ranks_full_match_first_and_drops_non_matches():
    records = [
        _bm("1", "rust", "https://rust-lang.org"),
        _bm("2", "rust-lang", "https://example.com"),
        _bm("3", "other", "https://other.com"),
    ]
    hits = rank(records, "rust", fuzzy=False, limit=10)
    assert [h.record.id for h in hits] == ["1", "2"]
    assert hits[0].score == 200 + 100 + 50 + 100
    assert hits[1].score == 200 + 50


def test_exact_score_adds_field_weights():
    b = _bm("x", "Rust Book", "https://doc.rust-lang.org", "Root/Rust")
    assert exact_score(b, "rust") == 200 + 50 + 100 + 50
    assert exact_score(b, "book") == 200
    assert exact_score(b, "nothing") == 0


def test_equal_scores_keep_source_order():
    records = [_bm(str(i), "alpha") for i in range(5)]
    hits = rank(records, "alpha", limit=2)
    assert [h.index for h in hits] == [0, 1]


@pytest.mark.parametrize("order", [[3, 1, 2, 0], [0, 2, 1, 3]])
def test_topk_result_is_independent_of_offer_order(order):
    b = _bm("x", "x")
    items = {
        0: RankedHit(record=b, score=5, index=0),
        1: RankedHit(record=b, score=10, index=1),
        2: RankedHit(record=b, score=10, index=2),
        3: RankedHit(record=b, score=10, index=3),
    }
    top = TopK(2, compare_hits)
    for i in order:
        top.offer(items[i])
    assert [h.index for h in top.results()] == [1, 2]
    assert len(top) == 2


def test_topk_with_zero_capacity_keeps_nothing():
    top = TopK(0, compare_hits)
    assert top.offer(RankedHit(record=_bm("x", "x"), score=1, index=0)) is False
    assert top.results() == []


def test_topk_uses_injected_comparator():
    top = TopK(3, lambda a, b: (a > b) - (a < b))  # ascending ints
    top.extend([5, 1, 4, 2, 3])
    assert top.results() == [1, 2, 3]


def test_zero_limit_scores_nothing(monkeypatch):
    def _boom(*_args, **_kwargs):
        raise AssertionError("scored a candidate with limit=0")

    monkeypatch.setattr(ranking, "exact_score", _boom)
    monkeypatch.setattr(ranking, "fuzzy_score", _boom)
    records = [_bm("1", "rust")]
    assert rank(records, "rust", limit=0) == []
    assert rank(records, "rust", fuzzy=True, limit=0) == []


def test_empty_query_returns_accepted_records_in_order(monkeypatch):
    def _boom(*_args, **_kwargs):
        raise AssertionError("empty query must not be scored")

    monkeypatch.setattr(ranking, "exact_score", _boom)
    records = [_bm("1", "one"), _bm("2", "two"), _bm("3", "three"), _bm("4", "four")]
    hits = rank(records, "", limit=2, accept=lambda r: r.id != "1")
    assert [h.record.id for h in hits] == ["2", "3"]
    assert [h.index for h in hits] == [1, 2]


def test_fuzzy_match_requires_subsequence():
    assert fuzzy_match("github", "ghb") is not None
    assert fuzzy_match("abc", "abd") is None
    assert fuzzy_match("abc", "") is None
    assert fuzzy_match("ab", "abc") is None


def test_fuzzy_match_is_smart_case():
    assert fuzzy_match("GitHub", "gh") is not None
    assert fuzzy_match("github", "GH") is None
    assert fuzzy_match("GitHub", "GH") is not None


def test_fuzzy_match_prefers_contiguous_hits():
    assert fuzzy_match("rust-lang", "rust") > fuzzy_match("r_u_s_t", "rust")
    assert fuzzy_match("rustacean", "rust") > fuzzy_match("xrxuxsxt", "rust")


def test_fuzzy_score_takes_max_of_weighted_fields():
    b = _bm("1", "rust", "https://rust.example", "Rust")
    name = fuzzy_match(b.name, "rust")
    url = fuzzy_match(b.url, "rust")
    folder = fuzzy_match(b.folder_path, "rust")
    assert fuzzy_score(b, "rust") == max(name * 2, url, folder // 2)
    assert fuzzy_score(b, "rust") < name * 2 + url + folder // 2


def test_fuzzy_rank_excludes_records_without_any_matching_field():
    records = [
        _bm("1", "GitHub", "https://github.com"),
        _bm("2", "Other", "https://other.example"),
    ]
    hits = rank(records, "gh", fuzzy=True, limit=10)
    assert [h.record.id for h in hits] == ["1"]


def test_fuzzy_rank_uses_folder_path():
    records = [_bm("1", "Docs", "https://a.example", "Root/Kubernetes")]
    hits = rank(records, "kbn", fuzzy=True, limit=10)
    assert [h.record.id for h in hits] == ["1"]


def test_fuzzy_match_scores_on_a_hundred_point_scale():
    assert fuzzy_match("rust-lang", "rust") == 100
    assert 0 < fuzzy_match("r_u_s_t", "rust") < 100


def test_fuzzy_rank_drops_hits_whose_weighted_score_is_zero(monkeypatch):
    folder_only = _bm("1", "Docs", "https://a.example", "Root/Deep")
    named = _bm("2", "Deep dive", "https://b.example", "Root/Other")

    def weak_folder_match(choice, pattern):
        if choice == "Root/Deep":
            return 1
        if choice == "Deep dive":
            return 40
        return None

    monkeypatch.setattr(ranking, "fuzzy_match", weak_folder_match)
    assert fuzzy_score(folder_only, "deep") == 0
    hits = rank([folder_only, named], "deep", fuzzy=True, limit=10)
    assert [h.record.id for h in hits] == ["2"]
