"""Result formatting for directory search and listings.

Raw hits arrive in different shapes depending on where they came from: the
vector search procedure, the text fallback scan, a cached result list, or a
member listing. Each source is tagged explicitly (``HitSource``) and goes
through exactly one adapter into a ``DirectoryHit``; the formatter then
assigns ranks, truncates text, synthesizes deep links and derives the
action buttons.

Similarity is always reported on a 0-100 integer scale. The confidence label
is derived from it for display only and never stored.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence


DESCRIPTION_MAX_LENGTH = 200
FALLBACK_SIMILARITY = 50


class HitSource(Enum):
    """Where a raw hit came from."""
    VECTOR = "vector"
    CACHED = "cached"
    FALLBACK = "fallback"
    LISTING = "listing"


@dataclass(frozen=True)
class RawHit:
    """A raw directory record tagged with its source."""
    source: HitSource
    record: Mapping[str, Any]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_similarity(raw: Any) -> int:
    """Normalize an upstream similarity to an integer in ``[0, 100]``.

    Values in ``[0, 1]`` are treated as fractions; anything above 1 is taken
    as an already-percentage score.
    """
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if math.isnan(value):
        return 0

    score = _round_half_up(value) if value > 1 else _round_half_up(value * 100)
    return max(0, min(100, score))


def confidence_label(similarity: Optional[int]) -> Optional[str]:
    """Human-readable confidence bucket for a normalized similarity."""
    if similarity is None:
        return None
    if similarity >= 80:
        return "Excellent"
    if similarity >= 65:
        return "High"
    if similarity >= 50:
        return "Good"
    if similarity >= 40:
        return "Fair"
    return "Low"


def _first(record: Mapping[str, Any], *keys: str) -> Optional[str]:
    """First non-empty value among ``keys``, as a stripped string."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _single_line(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.replace("\r", "").replace("\n", "").strip()
    return cleaned or None


def _truncate(value: Optional[str], limit: int = DESCRIPTION_MAX_LENGTH) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


@dataclass
class DirectoryHit:
    """A normalized, not yet ranked directory hit."""
    membership_id: str
    business_name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    chapter: Optional[str] = None
    city: Optional[str] = None
    logo_url: Optional[str] = None
    phone: Optional[str] = None
    phone_country_code: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    booking_url: Optional[str] = None
    similarity: Optional[int] = None

    @property
    def searchable_text(self) -> str:
        """Case-folded name, description, industry and locale fields."""
        parts = [self.business_name, self.description, self.industry, self.city, self.chapter]
        return " ".join(p for p in parts if p).casefold()

    def matches_any(self, terms: Sequence[str]) -> bool:
        text = self.searchable_text
        return any(term in text for term in terms)


def _adapt_vector(record: Mapping[str, Any]) -> DirectoryHit:
    return DirectoryHit(
        membership_id=str(record["membership_id"]),
        business_name=_first(record, "business_name"),
        description=_first(record, "description", "profile_snippet", "short_description"),
        industry=_first(record, "industry"),
        chapter=_first(record, "chapter"),
        city=_first(record, "city"),
        logo_url=_first(record, "logo_url"),
        phone=_first(record, "phone", "mobile_number"),
        phone_country_code=_first(record, "phone_country_code", "business_phone_country_code"),
        whatsapp=_first(record, "whatsapp", "business_whatsapp"),
        email=_first(record, "email", "business_email"),
        website=_first(record, "website", "website_url"),
        booking_url=_first(record, "booking_url"),
        similarity=normalize_similarity(record.get("similarity")),
    )


def _adapt_fallback(record: Mapping[str, Any]) -> DirectoryHit:
    return DirectoryHit(
        membership_id=str(record["membership_id"]),
        business_name=_first(record, "business_name"),
        description=_first(record, "short_description", "ai_enhanced_description", "description"),
        industry=_first(record, "industry"),
        chapter=_first(record, "chapter"),
        city=_first(record, "city"),
        logo_url=_first(record, "logo_url"),
        phone=_first(record, "mobile_number", "phone"),
        phone_country_code=_first(record, "business_phone_country_code"),
        whatsapp=_first(record, "business_whatsapp"),
        email=_first(record, "business_email", "email"),
        website=_first(record, "website_url", "website"),
        booking_url=_first(record, "booking_url"),
        similarity=FALLBACK_SIMILARITY,
    )


def _adapt_cached(record: Mapping[str, Any]) -> DirectoryHit:
    # Cached similarity is already on the 0-100 scale.
    similarity = record.get("similarity")
    if similarity is not None:
        try:
            similarity = max(0, min(100, int(similarity)))
        except (TypeError, ValueError):
            similarity = None

    return DirectoryHit(
        membership_id=str(record["membership_id"]),
        business_name=_first(record, "business_name"),
        description=_first(record, "short_description"),
        industry=_first(record, "industry"),
        chapter=_first(record, "chapter"),
        city=_first(record, "city"),
        logo_url=_first(record, "logo_url"),
        phone=_first(record, "phone"),
        phone_country_code=_first(record, "phone_country_code"),
        whatsapp=_first(record, "whatsapp"),
        email=_first(record, "email"),
        website=_first(record, "website"),
        booking_url=_first(record, "booking_url"),
        similarity=similarity,
    )


def _adapt_listing(record: Mapping[str, Any]) -> DirectoryHit:
    return DirectoryHit(
        membership_id=str(record["membership_id"]),
        business_name=_first(record, "business_name"),
        description=_first(record, "short_description"),
        industry=_first(record, "industry"),
        chapter=_first(record, "chapter"),
        city=_first(record, "city"),
        logo_url=_first(record, "logo_url"),
        phone=_first(record, "contact_phone", "mobile_number"),
        phone_country_code=_first(record, "business_phone_country_code"),
        whatsapp=_first(record, "business_whatsapp"),
        email=_first(record, "contact_email", "business_email"),
        website=_first(record, "website_url"),
        booking_url=_first(record, "booking_url"),
        similarity=None,
    )


_ADAPTERS: Dict[HitSource, Callable[[Mapping[str, Any]], DirectoryHit]] = {
    HitSource.VECTOR: _adapt_vector,
    HitSource.CACHED: _adapt_cached,
    HitSource.FALLBACK: _adapt_fallback,
    HitSource.LISTING: _adapt_listing,
}


def adapt_hit(hit: RawHit) -> Optional[DirectoryHit]:
    """Normalize one raw hit; records without an identifier are dropped."""
    if not hit.record or not hit.record.get("membership_id"):
        return None
    return _ADAPTERS[hit.source](hit.record)


def adapt_hits(source: HitSource, records: Sequence[Mapping[str, Any]]) -> List[DirectoryHit]:
    """Adapt a list of records sharing one source, preserving order."""
    hits = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        hit = adapt_hit(RawHit(source, record))
        if hit is not None:
            hits.append(hit)
    return hits


@dataclass
class ActionButton:
    """A contact action offered next to a result."""
    type: str
    label: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "label": self.label, "value": self.value}


@dataclass
class RankedResult:
    """A ranked, display-ready directory result."""
    rank: int
    membership_id: str
    business_name: str
    industry: str
    short_description: Optional[str] = None
    chapter: Optional[str] = None
    city: Optional[str] = None
    logo_url: Optional[str] = None
    phone: Optional[str] = None
    phone_country_code: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    booking_url: Optional[str] = None
    similarity: Optional[int] = None
    card_url: Optional[str] = None
    vcard_url: Optional[str] = None

    @property
    def confidence(self) -> Optional[str]:
        return confidence_label(self.similarity)

    @property
    def actions(self) -> List[ActionButton]:
        """One action per populated contact channel, in fixed priority order."""
        candidates = [
            ("call", "Call", self.phone),
            ("whatsapp", "WhatsApp", self.whatsapp),
            ("email", "Email", self.email),
            ("website", "Website", self.website),
            ("booking", "Book Now", self.booking_url),
            ("view-card", "View Card", self.card_url),
            ("save-contact", "Save Contact", self.vcard_url),
        ]
        return [ActionButton(kind, label, value) for kind, label, value in candidates if value]

    def _stored_fields(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "membership_id": self.membership_id,
            "business_name": self.business_name,
            "short_description": self.short_description,
            "industry": self.industry,
            "chapter": self.chapter,
            "city": self.city,
            "logo_url": self.logo_url,
            "phone": self.phone,
            "phone_country_code": self.phone_country_code,
            "whatsapp": self.whatsapp,
            "email": self.email,
            "website": self.website,
            "booking_url": self.booking_url,
            "similarity": self.similarity,
            "card_url": self.card_url,
            "vcard_url": self.vcard_url,
        }

    def to_dict(self, include_derived: bool = True) -> Dict[str, Any]:
        """Serialize the result.

        ``include_derived=False`` omits the confidence label and actions,
        which is the shape written to the query cache.
        """
        data = self._stored_fields()
        if include_derived:
            data["confidence"] = self.confidence
            data["actions"] = [action.to_dict() for action in self.actions]
        return data


@dataclass
class ContactResult(RankedResult):
    """Full contact card for a single member."""
    ai_enhanced_description: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    full_address: Optional[str] = None
    whatsapp_country_code: Optional[str] = None
    semantic_clusters: List[str] = field(default_factory=list)

    def _stored_fields(self) -> Dict[str, Any]:
        data = super()._stored_fields()
        data.update({
            "ai_enhanced_description": self.ai_enhanced_description,
            "state": self.state,
            "address": self.address,
            "full_address": self.full_address,
            "whatsapp_country_code": self.whatsapp_country_code,
            "semantic_clusters": list(self.semantic_clusters),
        })
        return data


@dataclass
class SegmentResult:
    """An industry segment of a directory."""
    segment_name: str
    industry_id: str
    member_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment_name": self.segment_name,
            "industry_id": self.industry_id,
            "member_count": self.member_count,
        }


class ResultFormatter:
    """Turns directory hits into ranked, annotated results.

    Parameters
    - card_base_url: Base of the member card deep link
    - vcard_base_url: Base of the downloadable contact deep link
    - default_country_code: Dialling prefix used when a record carries none
    """

    def __init__(
        self,
        card_base_url: str,
        vcard_base_url: str,
        default_country_code: str = "91"
    ):
        self.card_base_url = card_base_url.rstrip("/")
        self.vcard_base_url = vcard_base_url.rstrip("/")
        self.default_country_code = "+" + default_country_code.lstrip("+")

    def card_url(self, membership_id: str) -> str:
        return f"{self.card_base_url}/{membership_id}"

    def vcard_url(self, membership_id: str) -> str:
        return f"{self.vcard_base_url}/{membership_id}"

    def _country_code(self, value: Optional[str]) -> str:
        if not value:
            return self.default_country_code
        return value if value.startswith("+") else "+" + value

    def format(self, hits: Sequence[DirectoryHit]) -> List[RankedResult]:
        """Rank hits 1..N in input order and build display fields."""
        results = []
        for index, hit in enumerate(hits):
            results.append(RankedResult(
                rank=index + 1,
                membership_id=hit.membership_id,
                business_name=hit.business_name or "Unknown",
                short_description=_truncate(hit.description),
                industry=hit.industry or "General",
                chapter=_single_line(hit.chapter),
                city=_single_line(hit.city),
                logo_url=hit.logo_url,
                phone=hit.phone,
                phone_country_code=self._country_code(hit.phone_country_code),
                whatsapp=hit.whatsapp,
                email=hit.email,
                website=hit.website,
                booking_url=hit.booking_url,
                similarity=hit.similarity,
                card_url=self.card_url(hit.membership_id),
                vcard_url=self.vcard_url(hit.membership_id),
            ))
        return results

    def format_records(
        self,
        source: HitSource,
        records: Sequence[Mapping[str, Any]]
    ) -> List[RankedResult]:
        """Adapt and rank records of a single source."""
        return self.format(adapt_hits(source, records))

    def format_contact(self, record: Mapping[str, Any]) -> Optional[ContactResult]:
        """Build the full contact card from a contact record."""
        if not record or not record.get("membership_id"):
            return None

        membership_id = str(record["membership_id"])
        clusters = record.get("semantic_clusters") or []
        return ContactResult(
            rank=1,
            membership_id=membership_id,
            business_name=_first(record, "business_name") or "Unknown",
            short_description=_truncate(_first(record, "short_description")),
            industry=_first(record, "industry") or "General",
            chapter=_single_line(_first(record, "chapter")),
            city=_single_line(_first(record, "city")),
            logo_url=_first(record, "logo_url"),
            phone=_first(record, "mobile_number", "phone"),
            phone_country_code=self._country_code(_first(record, "business_phone_country_code")),
            whatsapp=_first(record, "business_whatsapp", "whatsapp"),
            email=_first(record, "business_email", "email"),
            website=_first(record, "website_url", "website"),
            booking_url=_first(record, "booking_url"),
            similarity=None,
            card_url=self.card_url(membership_id),
            vcard_url=self.vcard_url(membership_id),
            ai_enhanced_description=_first(record, "ai_enhanced_description"),
            state=_first(record, "state_code", "state"),
            address=_first(record, "address_line1"),
            full_address=_first(record, "full_address"),
            whatsapp_country_code=self._country_code(_first(record, "business_whatsapp_country_code")),
            semantic_clusters=[str(c) for c in clusters if c],
        )

    def format_segments(self, records: Sequence[Mapping[str, Any]]) -> List[SegmentResult]:
        segments = []
        for record in records:
            name = _first(record, "segment_name")
            if not name:
                continue
            try:
                count = int(record.get("member_count") or 0)
            except (TypeError, ValueError):
                count = 0
            segments.append(SegmentResult(
                segment_name=name,
                industry_id=_first(record, "industry_id") or "",
                member_count=count,
            ))
        return segments


def results_to_dicts(results: Sequence[Any], include_derived: bool = True) -> List[Dict[str, Any]]:
    """Serialize a list of formatter outputs."""
    serialized = []
    for result in results:
        if isinstance(result, RankedResult):
            serialized.append(result.to_dict(include_derived=include_derived))
        else:
            serialized.append(result.to_dict())
    return serialized
