"""WhatsApp message templates.

The WhatsApp gateway only sends pre-approved templates with positional text
parameters. Each response type maps to one template; parameters are single
line and capped at the platform limit.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..handlers.directory_handlers import TurnResult

MAX_PARAM_LENGTH = 1024
MAX_LISTED_RESULTS = 5

_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


def clean_param(value: Any) -> str:
    """Collapse line breaks and cap the length of a template parameter."""
    text = "" if value is None else str(value)
    text = _LINE_BREAKS.sub(" ", text).strip()
    return text[:MAX_PARAM_LENGTH]


def _result_lines(results: Sequence[Dict[str, Any]]) -> str:
    lines = []
    for item in results[:MAX_LISTED_RESULTS]:
        line = f"{item.get('rank')}. {item.get('business_name')}"
        if item.get("industry"):
            line += f" ({item['industry']})"
        lines.append(line)
    return "; ".join(lines)


def _segment_lines(results: Sequence[Dict[str, Any]]) -> str:
    return "; ".join(f"{s.get('segment_name')}: {s.get('member_count')}" for s in results)


def _contact_params(result: TurnResult) -> List[Any]:
    contact = result.results[0] if result.results else {}
    phone = contact.get("phone")
    if phone:
        phone = f"{contact.get('phone_country_code') or ''} {phone}".strip()
    return [
        contact.get("business_name"),
        contact.get("industry"),
        phone or "-",
        contact.get("card_url"),
    ]


def build_template(
    result: TurnResult,
    group_name: str,
    is_member: bool
) -> Tuple[str, List[str]]:
    """Template name and ordered parameters for a turn result."""
    response_type = result.response_type

    if response_type == "welcome":
        name = "directory_welcome_member" if is_member else "directory_welcome_guest"
        params: List[Any] = [group_name]
    elif response_type == "goodbye":
        name, params = "directory_goodbye", [group_name]
    elif response_type == "segments_list":
        name, params = "directory_segments", [group_name, _segment_lines(result.results) or "-"]
    elif response_type in ("search_results", "members_list"):
        name, params = "directory_results", [result.message, _result_lines(result.results) or "-"]
    elif response_type in ("contact_details", "owner_welcome", "booking"):
        name, params = "directory_contact", _contact_params(result) + [result.message]
    elif response_type == "explore_welcome":
        name, params = "directory_explore", [group_name, result.message]
    elif response_type == "error":
        name, params = "directory_error", [result.message]
    else:
        name, params = "directory_message", [result.message]

    return name, [clean_param(p) for p in params]


def template_fields(
    channel: str,
    result: TurnResult,
    group_name: str,
    is_member: bool
) -> Dict[str, Optional[Any]]:
    """Envelope template fields; populated for the WhatsApp channel only."""
    if channel != "whatsapp":
        return {"template_name": None, "template_params": None}

    name, params = build_template(result, group_name, is_member)
    return {"template_name": name, "template_params": params}
