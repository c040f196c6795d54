"""
Test cases for SmartGranularitySelector.
"""

import pytest

from docchat.core.granularity import SmartGranularitySelector, downgrade
from docchat.vector.types import RetrievalUnit


def make_unit(unit_id, summary=200, digest=1200, full=4000, keywords=None):
    """Latin filler text: every 4 characters estimate to one token."""
    return RetrievalUnit(
        id=unit_id,
        summary="s" * summary,
        digest="d" * digest,
        full_text="f" * full,
        keywords=keywords or [f"kw-{unit_id}"],
    )


@pytest.fixture
def selector():
    return SmartGranularitySelector()


@pytest.mark.parametrize("query,expected", [
    ("Summarize the paper", "overview"),
    ("总结一下这篇文章", "overview"),
    ("What is the exact value in table 2?", "extraction"),
    ("Why does the method fail on long inputs?", "analytical"),
    ("比较这两种模型的区别", "analytical"),
    ("What is the answer", "specific"),
    ("", "specific"),
])
def test_classify_query(selector, query, expected):
    assert selector.classify_query(query) == expected


def test_classify_query_first_family_wins(selector):
    # Both an overview and an analytical term; overview is checked first
    assert selector.classify_query("Give an overall explanation of why") == "overview"


def test_downgrade_order():
    assert downgrade("full") == "digest"
    assert downgrade("digest") == "summary"
    assert downgrade("summary") is None


def test_single_candidate_escalates_to_full(selector):
    selection = selector.select_granularity("What is the answer", [make_unit("g1")])
    assert selection.granularity == "full"

    overview = selector.select_granularity("Summarize it", [make_unit("g1")])
    assert overview.granularity == "full"


def test_single_candidate_without_full_text(selector):
    selection = selector.select_granularity("What is the answer", [make_unit("g1", full=0)])
    assert selection.granularity == "digest"


def test_two_candidates_escalate_summary_to_digest(selector):
    selection = selector.select_granularity("Summarize it", [make_unit("g1"), make_unit("g2")])
    assert selection.granularity == "digest"
    assert selection.query_type == "overview"


def test_rule_table(selector):
    units = [make_unit(f"g{i}") for i in range(6)]

    assert selector.select_granularity("Summarize it", units).max_units == 10
    assert selector.select_granularity("Show the exact table", units).granularity == "full"
    assert selector.select_granularity("Show the exact table", units).max_units == 3
    assert selector.select_granularity("What is the answer", units).granularity == "digest"


def test_overflow_degrades_granularity(selector):
    """Three full texts cost 3000 tokens; digests at 300 fit a 500 ceiling."""
    units = [make_unit(f"g{i}", digest=400, full=4000) for i in range(3)]

    selection = selector.select_granularity("Show the exact table", units, max_tokens=500)

    assert selection.granularity == "digest"
    assert selection.max_units == 3
    assert selection.estimated_tokens == 300


def test_overflow_at_summary_shrinks_unit_count(selector):
    units = [make_unit(f"g{i}", summary=400) for i in range(10)]

    selection = selector.select_granularity("Summarize it", units, max_tokens=300)

    assert selection.granularity == "summary"
    assert selection.max_units == 3
    assert selection.estimated_tokens <= 300


def test_unknown_forced_granularity_rejected(selector):
    with pytest.raises(ValueError):
        selector.select_granularity("q", [make_unit("g1")], force_granularity="chapter")


def test_adjust_for_unit_rules(selector):
    short = make_unit("short", full=1000)
    assert selector.adjust_for_unit(short, "summary") == "full"

    no_digest = make_unit("nd", digest=50, full=4000)
    assert selector.adjust_for_unit(no_digest, "digest") == "full"

    bare = RetrievalUnit(id="bare", summary="s" * 100, char_count=4000)
    assert selector.adjust_for_unit(bare, "digest") == "summary"

    no_full = make_unit("nf", full=0)
    no_full.char_count = 4000
    assert selector.adjust_for_unit(no_full, "full") == "digest"


def test_mixed_granularity_stays_within_budget(selector):
    """Six ranked groups against 1000 tokens admit fewer than six within budget."""
    ranked = [(make_unit(f"g{i}"), 1.0 - i * 0.1) for i in range(6)]

    decisions = selector.select_mixed_granularity("What is the answer", ranked, max_tokens=1000)

    assert 0 < len(decisions) < 6
    assert sum(d.estimated_tokens for d in decisions) <= 1000
    assert decisions[0].unit.id == "g0"


def test_mixed_granularity_degrades_before_dropping(selector):
    ranked = [make_unit(f"g{i}") for i in range(6)]

    decisions = selector.select_mixed_granularity("What is the answer", ranked, max_tokens=1200)

    assert [d.granularity for d in decisions] == ["full", "summary", "summary", "summary", "summary"]
    assert sum(d.estimated_tokens for d in decisions) == 1200
    assert all(d.score == 1.0 for d in decisions)


def test_mixed_granularity_decays_by_rank(selector):
    ranked = [make_unit(f"g{i}") for i in range(5)]

    decisions = selector.select_mixed_granularity("What is the answer", ranked, max_tokens=8000)

    assert [d.granularity for d in decisions] == ["full", "digest", "digest", "summary", "summary"]


def test_mixed_overview_tops_out_at_digest(selector):
    decisions = selector.select_mixed_granularity("Summarize it", [make_unit("g0")], max_tokens=8000)
    assert decisions[0].granularity == "digest"


def test_build_mixed_context(selector):
    decisions = selector.select_mixed_granularity("What is the answer", [make_unit("g0", keywords=["alpha", "beta"])])

    context = selector.build_mixed_context(decisions)

    assert context.startswith("[g0 - full]")
    assert "Keywords: alpha, beta" in context
    assert "f" * 100 in context


def test_mixed_granularity_skips_missing_digest(selector):
    """A unit with no digest degrades from full straight to its summary."""
    unit = RetrievalUnit(id="g0", summary="short summary", digest="", full_text="x" * 3000, char_count=3000)

    decisions = selector.select_mixed_granularity("What is the answer", [unit], max_tokens=100)
    context = selector.build_mixed_context(decisions)

    assert [(d.granularity, d.estimated_tokens) for d in decisions] == [("summary", 4)]
    assert context == "[g0 - summary]\nContent:\nshort summary"


def test_text_for_falls_back_to_lower_levels():
    unit = RetrievalUnit(id="g0", summary="sum", digest="", full_text="")

    assert unit.text_for("full") == "sum"
    assert unit.text_for("digest") == "sum"
    assert unit.effective_granularity("full") == "summary"
    assert unit.has_level("digest") is False

    with_digest = RetrievalUnit(id="g1", summary="sum", digest="dig", full_text="")
    assert with_digest.text_for("full") == "dig"
