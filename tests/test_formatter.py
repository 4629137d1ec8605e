"""Tests for hit normalization and result formatting."""

import json

import pytest

from service_discovery.app.ranking.formatter import (
    HitSource,
    RawHit,
    adapt_hit,
    adapt_hits,
    confidence_label,
    normalize_similarity,
    results_to_dicts,
)


@pytest.mark.parametrize("raw,expected", [
    (0.82, 82),
    (0.3, 30),
    (0.005, 1),
    (0.0, 0),
    (1, 100),
    (1.0, 100),
    (82.4, 82),
    (64.5, 65),
    (150, 100),
    (-0.2, 0),
    ("0.5", 50),
    (None, 0),
    ("n/a", 0),
    (float("nan"), 0),
])
def test_normalize_similarity(raw, expected):
    """Test similarity is always an integer in [0, 100]."""
    assert normalize_similarity(raw) == expected


@pytest.mark.parametrize("similarity,label", [
    (95, "Excellent"),
    (80, "Excellent"),
    (79, "High"),
    (65, "High"),
    (50, "Good"),
    (40, "Fair"),
    (39, "Low"),
    (None, None),
])
def test_confidence_label(similarity, label):
    assert confidence_label(similarity) == label


def test_records_without_identifier_are_dropped():
    """Test adapters skip records that carry no membership id."""
    assert adapt_hit(RawHit(HitSource.VECTOR, {"business_name": "Nameless"})) is None

    hits = adapt_hits(HitSource.FALLBACK, [
        {"membership_id": "m1", "business_name": "Kept"},
        {"business_name": "Dropped"},
        "not a record",
    ])
    assert [h.membership_id for h in hits] == ["m1"]


def test_adapters_set_similarity_per_source():
    """Test each source produces its own similarity semantics."""
    record = {"membership_id": "m1", "business_name": "Acme", "similarity": 0.82}

    assert adapt_hit(RawHit(HitSource.VECTOR, record)).similarity == 82
    assert adapt_hit(RawHit(HitSource.FALLBACK, record)).similarity == 50
    assert adapt_hit(RawHit(HitSource.LISTING, record)).similarity is None

    # Cached similarity is stored already normalized
    cached = adapt_hit(RawHit(HitSource.CACHED, {"membership_id": "m1", "similarity": 82}))
    assert cached.similarity == 82


def test_format_ranks_in_input_order(formatter):
    """Test ranks are exactly 1..N in input order."""
    hits = adapt_hits(HitSource.VECTOR, [
        {"membership_id": "m3", "business_name": "Third", "similarity": 0.4},
        {"membership_id": "m1", "business_name": "First", "similarity": 0.9},
        {"membership_id": "m2", "business_name": "Second", "similarity": 0.6},
    ])

    results = formatter.format(hits)
    assert [r.rank for r in results] == [1, 2, 3]
    assert [r.membership_id for r in results] == ["m3", "m1", "m2"]


def test_format_display_fields(formatter):
    """Test truncation, line-break stripping, defaults and deep links."""
    hits = adapt_hits(HitSource.FALLBACK, [{
        "membership_id": "m1",
        "short_description": "x" * 250,
        "city": "Pune\r\n",
        "chapter": "West\nChapter",
    }])

    result = formatter.format(hits)[0]
    assert result.business_name == "Unknown"
    assert result.industry == "General"
    assert len(result.short_description) == 200
    assert result.city == "Pune"
    assert result.chapter == "WestChapter"
    assert result.phone_country_code == "+91"
    assert result.card_url == "https://cards.test/card/m1"
    assert result.vcard_url == "https://cards.test/vcard/m1"


def test_actions_follow_fixed_order(formatter):
    """Test one action per populated channel, in priority order."""
    hits = adapt_hits(HitSource.VECTOR, [{
        "membership_id": "m1",
        "business_name": "Acme",
        "website": "https://acme.test",
        "phone": "9876543210",
        "booking_url": "https://acme.test/book",
        "similarity": 0.7,
    }])

    result = formatter.format(hits)[0]
    assert [a.type for a in result.actions] == ["call", "website", "booking", "view-card", "save-contact"]
    assert result.actions[0].value == "9876543210"

    data = result.to_dict()
    assert data["confidence"] == "High"
    assert data["actions"][-1] == {
        "type": "save-contact",
        "label": "Save Contact",
        "value": "https://cards.test/vcard/m1",
    }


def test_cache_shape_excludes_derived_fields(formatter):
    """Test stored dicts carry no confidence label or actions."""
    results = formatter.format_records(HitSource.VECTOR, [
        {"membership_id": "m1", "business_name": "Acme", "similarity": 0.82},
    ])

    stored = results_to_dicts(results, include_derived=False)[0]
    assert "confidence" not in stored
    assert "actions" not in stored
    assert stored["similarity"] == 82


def test_cached_round_trip_keeps_similarity(formatter):
    """Test re-formatting stored results keeps ranks and similarity."""
    first = formatter.format_records(HitSource.VECTOR, [
        {"membership_id": "m1", "business_name": "Acme", "description": "AI platform", "similarity": 0.82},
        {"membership_id": "m2", "business_name": "Beta", "description": "Data platform", "similarity": 0.3},
    ])
    stored = json.loads(json.dumps(results_to_dicts(first, include_derived=False)))

    again = formatter.format_records(HitSource.CACHED, stored)
    assert results_to_dicts(again) == results_to_dicts(first)


def test_format_is_deterministic(formatter):
    """Test identical input serializes to identical bytes."""
    records = [{"membership_id": "m1", "business_name": "Acme", "similarity": 0.5, "email": "a@acme.test"}]

    first = json.dumps(results_to_dicts(formatter.format_records(HitSource.VECTOR, records)), sort_keys=True)
    second = json.dumps(results_to_dicts(formatter.format_records(HitSource.VECTOR, records)), sort_keys=True)
    assert first == second


def test_format_contact(formatter):
    """Test contact cards map the contact record fields."""
    contact = formatter.format_contact({
        "membership_id": "m9",
        "business_name": "Green Farms",
        "industry": "Agriculture",
        "mobile_number": "9876543210",
        "business_whatsapp": "9876543210",
        "business_whatsapp_country_code": "+91",
        "state_code": "MH",
        "address_line1": "12 Market Road",
        "semantic_clusters": ["organic", None, "dairy"],
    })

    assert contact.rank == 1
    assert contact.phone == "9876543210"
    assert contact.whatsapp == "9876543210"
    assert contact.state == "MH"
    assert contact.address == "12 Market Road"
    assert contact.semantic_clusters == ["organic", "dairy"]
    assert contact.to_dict()["whatsapp_country_code"] == "+91"

    assert formatter.format_contact({}) is None


def test_format_segments(formatter):
    """Test segment rows coerce counts and skip unnamed rows."""
    segments = formatter.format_segments([
        {"segment_name": "Technology", "industry_id": "tech", "member_count": "12"},
        {"segment_name": "", "industry_id": "x", "member_count": 3},
        {"segment_name": "Agriculture", "industry_id": "agri", "member_count": None},
    ])

    assert [s.to_dict() for s in segments] == [
        {"segment_name": "Technology", "industry_id": "tech", "member_count": 12},
        {"segment_name": "Agriculture", "industry_id": "agri", "member_count": 0},
    ]
