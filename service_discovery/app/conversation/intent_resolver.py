"""Intent resolution for discovery turns.

Maps an explicit intent, or failing that a free-text message, to one of the
capabilities the service offers. Free text is classified by a fixed list of
rules tried in order; the first match wins and anything unmatched is treated
as a search. Resolution is pure: no I/O and no dependence on session state.
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Pattern
import structlog

logger = structlog.get_logger("discovery_service.intent_resolver")


class Intent(str, Enum):
    WELCOME = "welcome"
    GOODBYE = "goodbye"
    LIST_SEGMENTS = "list_segments"
    LIST_MEMBERS = "list_members"
    SEARCH = "search"
    SEARCH_PROMPT = "search_prompt"
    GET_CONTACT = "get_contact"
    ABOUT_OWNER = "about_owner"
    BOOK_APPOINTMENT = "book_appointment"
    CALL_OWNER = "call_owner"
    EXPLORE = "explore"
    UNKNOWN = "unknown"


class Channel(str, Enum):
    CHAT = "chat"
    WHATSAPP = "whatsapp"
    API = "api"


# Numbered menu replies and interactive button payloads sent by the WhatsApp gateway.
WHATSAPP_MENU_TOKENS: Dict[str, Intent] = {
    "menu": Intent.WELCOME,
    "1": Intent.SEARCH_PROMPT,
    "2": Intent.LIST_SEGMENTS,
    "3": Intent.ABOUT_OWNER,
    "4": Intent.BOOK_APPOINTMENT,
    "5": Intent.CALL_OWNER,
    "6": Intent.EXPLORE,
    "btn_search": Intent.SEARCH_PROMPT,
    "btn_segments": Intent.LIST_SEGMENTS,
    "btn_about_owner": Intent.ABOUT_OWNER,
    "btn_book": Intent.BOOK_APPOINTMENT,
    "btn_call": Intent.CALL_OWNER,
    "btn_explore": Intent.EXPLORE,
    "search businesses": Intent.SEARCH_PROMPT,
    "browse industries": Intent.LIST_SEGMENTS,
    "about owner": Intent.ABOUT_OWNER,
    "book appointment": Intent.BOOK_APPOINTMENT,
    "call owner": Intent.CALL_OWNER,
    "explore directory": Intent.EXPLORE,
}

EXIT_WORDS = frozenset(["bye", "exit", "quit", "goodbye", "end", "stop"])
GREETING_WORDS = ("hi", "hello", "hey", "start")

SEGMENT_KEYWORDS = ("segment", "industr", "categor")
SEGMENT_PATTERNS: List[Pattern] = [
    re.compile(r"\bshow\b.*\b(all|every)\b"),
    re.compile(r"\blist\b.*\b(all|every)\b"),
]

MEMBERS_WHO_PATTERN = re.compile(r"\bwho\b.*\b(is|are)\b.*\b(into|in)\s+(.+)")
MEMBERS_LIST_PATTERN = re.compile(
    r"\b(show|list|get|find)\s+(.+?)\s*\b(companies|businesses|members|firms|people)\b"
)

CONTACT_PATTERN = re.compile(r"\b(details?|contact|info|about|tell me about|more about)\b")

BUSINESS_NAME_PATTERNS: List[Pattern] = [
    re.compile(r"(?:get|show|find)\s+(?:details?|contact|info)(?:\s+(?:details?|info))?\s+(?:for\s+|of\s+)?(.+)", re.IGNORECASE),
    re.compile(r"(?:tell me about|more about)\s+(.+)", re.IGNORECASE),
    re.compile(r"(?:details?|contact|info|about)(?:\s+(?:details?|info))?\s+(?:for\s+|of\s+)?(.+)", re.IGNORECASE),
]

SEGMENT_MAP: Dict[str, str] = {
    "tech": "Technology",
    "technology": "Technology",
    "it": "Technology",
    "software": "Technology",
    "agri": "Agriculture",
    "agriculture": "Agriculture",
    "farming": "Agriculture",
    "farm": "Agriculture",
    "finance": "Financial Services",
    "financial": "Financial Services",
    "banking": "Financial Services",
    "real estate": "Real Estate & Construction",
    "realestate": "Real Estate & Construction",
    "construction": "Real Estate & Construction",
    "property": "Real Estate & Construction",
}


def parse_intent(value: Optional[str]) -> Optional[Intent]:
    """Parse an explicit intent; unknown names yield ``None``."""
    if not value:
        return None
    try:
        return Intent(value.strip().lower())
    except ValueError:
        return None


def parse_channel(value: Optional[str]) -> Channel:
    if not value:
        return Channel.CHAT
    try:
        return Channel(value.strip().lower())
    except ValueError:
        return Channel.CHAT


def normalize_segment(segment: Optional[str]) -> Optional[str]:
    """Map a segment synonym to its canonical name; unknown names pass through."""
    if not segment or not segment.strip():
        return None
    key = segment.strip().lower()
    return SEGMENT_MAP.get(key, segment.strip())


def extract_segment(text: Optional[str]) -> Optional[str]:
    """Segment named in a "who is into X" or "show X companies" message."""
    if not text:
        return None
    msg = text.strip().lower()

    match = MEMBERS_WHO_PATTERN.search(msg)
    if match:
        return normalize_segment(match.group(3).strip(" ?!."))

    match = MEMBERS_LIST_PATTERN.search(msg)
    if match:
        return normalize_segment(match.group(2))

    return None


def extract_business_name(text: Optional[str]) -> Optional[str]:
    """Business name from "details for X", "tell me about X" style messages."""
    if not text:
        return None

    for pattern in BUSINESS_NAME_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip(" ?!.")
    return None


class IntentResolver:
    """Classifies a turn into an ``Intent``."""

    def resolve(
        self,
        explicit_intent: Optional[str],
        text: Optional[str],
        channel: Channel = Channel.CHAT
    ) -> Intent:
        intent = parse_intent(explicit_intent)
        if intent is not None:
            return intent
        if explicit_intent:
            logger.debug("Ignoring unknown explicit intent", intent=explicit_intent)

        msg = (text or "").strip().lower()
        if not msg:
            return Intent.WELCOME

        return self._classify(msg, channel)

    def _classify(self, msg: str, channel: Channel) -> Intent:
        if channel == Channel.WHATSAPP:
            token_intent = WHATSAPP_MENU_TOKENS.get(msg)
            if token_intent is not None:
                return token_intent

        if msg in EXIT_WORDS:
            return Intent.GOODBYE

        if any(msg == word or msg.startswith(word + " ") for word in GREETING_WORDS):
            return Intent.WELCOME

        if any(keyword in msg for keyword in SEGMENT_KEYWORDS):
            return Intent.LIST_SEGMENTS
        if any(pattern.search(msg) for pattern in SEGMENT_PATTERNS):
            return Intent.LIST_SEGMENTS

        if MEMBERS_WHO_PATTERN.search(msg) or MEMBERS_LIST_PATTERN.search(msg):
            return Intent.LIST_MEMBERS

        if CONTACT_PATTERN.search(msg):
            return Intent.GET_CONTACT

        return Intent.SEARCH
