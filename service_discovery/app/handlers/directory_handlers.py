"""Capability handlers for discovery turns.

One coroutine per intent. Handlers read from the directory and search
resolver and return a ``TurnResult``; the discovery service wraps it into the
response envelope. Store failures are reported as a failed turn with a
user-facing message, anything else propagates to the service boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import structlog

from libs.directory_store.base import DirectoryStore, StoreError
from ..conversation.intent_resolver import (
    Intent,
    extract_business_name,
    extract_segment,
    normalize_segment,
)
from ..errors import BACKEND_UNAVAILABLE, NOT_FOUND, VALIDATION_ERROR
from ..hybrid.search_resolver import HybridSearchResolver
from ..ranking.formatter import ContactResult, HitSource, ResultFormatter, results_to_dicts

logger = structlog.get_logger("discovery_service.handlers")


@dataclass
class TurnContext:
    """What a handler knows about the current turn."""
    scope_id: Optional[str]
    group_name: str
    channel: str
    message: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    is_member: bool = False


@dataclass
class TurnResult:
    """Capability outcome, before the envelope is assembled."""
    success: bool
    intent: str
    response_type: str
    detail_level: str
    message: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    total_count: Optional[int] = None
    query: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    from_cache: bool = False
    error: Optional[str] = None

    @property
    def results_count(self) -> int:
        return len(self.results)


def _failure(intent: Intent, message: str, error: str) -> TurnResult:
    return TurnResult(
        success=False,
        intent=intent.value,
        response_type="error",
        detail_level="none",
        message=message,
        error=error,
    )


def _plural(count: int, word: str, plural: Optional[str] = None) -> str:
    if count == 1:
        return f"1 {word}"
    return f"{count} {plural or word + 's'}"


class DirectoryHandlers:
    """Handlers for every discovery intent.

    Parameters
    - directory: ``DirectoryStore`` for listings and contact lookups
    - resolver: ``HybridSearchResolver`` for free-text search
    - formatter: ``ResultFormatter`` shared with the resolver
    - default_limit / max_limit: Page size bounds for member listings
    """

    def __init__(
        self,
        directory: DirectoryStore,
        resolver: HybridSearchResolver,
        formatter: ResultFormatter,
        default_limit: int = 10,
        max_limit: int = 50
    ):
        self.directory = directory
        self.resolver = resolver
        self.formatter = formatter
        self.default_limit = default_limit
        self.max_limit = max_limit

        self._routes: Dict[Intent, Callable[[TurnContext], Awaitable[TurnResult]]] = {
            Intent.WELCOME: self.welcome,
            Intent.GOODBYE: self.goodbye,
            Intent.LIST_SEGMENTS: self.list_segments,
            Intent.LIST_MEMBERS: self.list_members,
            Intent.SEARCH: self.search,
            Intent.SEARCH_PROMPT: self.search_prompt,
            Intent.GET_CONTACT: self.get_contact,
            Intent.ABOUT_OWNER: self.about_owner,
            Intent.BOOK_APPOINTMENT: self.book_appointment,
            Intent.CALL_OWNER: self.call_owner,
            Intent.EXPLORE: self.explore,
            Intent.UNKNOWN: self.unknown,
        }

    async def handle(self, intent: Intent, ctx: TurnContext) -> TurnResult:
        """Route a turn to the handler for ``intent``."""
        handler = self._routes.get(intent, self.unknown)
        return await handler(ctx)

    def _page(self, params: Dict[str, Any]) -> Dict[str, int]:
        try:
            limit = int(params.get("limit") or self.default_limit)
        except (TypeError, ValueError):
            limit = self.default_limit
        try:
            offset = int(params.get("offset") or 0)
        except (TypeError, ValueError):
            offset = 0
        return {"limit": max(1, min(limit, self.max_limit)), "offset": max(0, offset)}

    async def welcome(self, ctx: TurnContext) -> TurnResult:
        if ctx.is_member:
            message = (
                f"👋 Welcome back to **{ctx.group_name}**!\n\n"
                "As a member you can:\n"
                "• 🔍 Search for businesses\n"
                "• 📋 Browse by industry\n"
                "• 📞 Get contact details\n\n"
                "What would you like to find?"
            )
        else:
            message = (
                f"👋 Welcome to **{ctx.group_name}** Business Directory!\n\n"
                "I can help you:\n"
                "• 🔍 Search for businesses\n"
                "• 📋 Browse by industry\n"
                "• 📞 Get contact details\n\n"
                "What would you like to find?"
            )
        return TurnResult(
            success=True,
            intent=Intent.WELCOME.value,
            response_type="welcome",
            detail_level="none",
            message=message,
        )

    async def goodbye(self, ctx: TurnContext) -> TurnResult:
        return TurnResult(
            success=True,
            intent=Intent.GOODBYE.value,
            response_type="goodbye",
            detail_level="none",
            message=f"👋 Thank you for using **{ctx.group_name}** Directory. Goodbye!",
        )

    async def unknown(self, ctx: TurnContext) -> TurnResult:
        return TurnResult(
            success=True,
            intent=Intent.UNKNOWN.value,
            response_type="conversation",
            detail_level="none",
            message=(
                "I'm not sure what you're looking for. Try:\n"
                "• 'Show segments' - See industries\n"
                "• 'Who is into Technology' - Browse by industry\n"
                "• 'Search AI companies' - Find businesses\n"
                "• 'Details for [business]' - Get contact info"
            ),
        )

    async def search_prompt(self, ctx: TurnContext) -> TurnResult:
        return TurnResult(
            success=True,
            intent=Intent.SEARCH_PROMPT.value,
            response_type="conversation",
            detail_level="none",
            message="🔍 What are you looking for? Type a business name, product or service.",
        )

    async def list_segments(self, ctx: TurnContext) -> TurnResult:
        try:
            records = await self.directory.list_segments(ctx.scope_id)
        except StoreError as e:
            logger.error("Error fetching segments", scope_id=ctx.scope_id, error=str(e))
            return _failure(Intent.LIST_SEGMENTS, "Unable to load segments. Please try again.", BACKEND_UNAVAILABLE)

        segments = self.formatter.format_segments(records)
        if not segments:
            return TurnResult(
                success=True,
                intent=Intent.LIST_SEGMENTS.value,
                response_type="segments_list",
                detail_level="list",
                message="No industry segments found.",
            )

        lines = [f"• **{s.segment_name}**: {_plural(s.member_count, 'member')}" for s in segments]
        message = "Here are the available industries:\n\n" + "\n".join(lines) + "\n\nSelect an industry to see members."

        return TurnResult(
            success=True,
            intent=Intent.LIST_SEGMENTS.value,
            response_type="segments_list",
            detail_level="list",
            message=message,
            results=results_to_dicts(segments),
        )

    async def list_members(self, ctx: TurnContext) -> TurnResult:
        segment = (
            normalize_segment(ctx.params.get("segment") or ctx.params.get("industry"))
            or extract_segment(ctx.message)
        )
        page = self._page(ctx.params)

        try:
            records = await self.directory.list_members(ctx.scope_id, segment, page["limit"], page["offset"])
        except StoreError as e:
            logger.error("Error fetching members", scope_id=ctx.scope_id, segment=segment, error=str(e))
            return _failure(Intent.LIST_MEMBERS, "Unable to load members. Please try again.", BACKEND_UNAVAILABLE)

        segment_display = segment or "all industries"
        results = self.formatter.format_records(HitSource.LISTING, records)

        if not results:
            return TurnResult(
                success=True,
                intent=Intent.LIST_MEMBERS.value,
                response_type="members_list",
                detail_level="summary",
                message=f"No members found in {segment_display}.",
                total_count=0,
                filters={"segment": segment},
            )

        try:
            total_count = int(records[0].get("total_count") or len(results))
        except (TypeError, ValueError):
            total_count = len(results)

        return TurnResult(
            success=True,
            intent=Intent.LIST_MEMBERS.value,
            response_type="members_list",
            detail_level="summary",
            message=f"Found {_plural(total_count, 'member')} in **{segment_display}**:",
            results=results_to_dicts(results),
            total_count=total_count,
            filters={"segment": segment},
        )

    async def search(self, ctx: TurnContext) -> TurnResult:
        query = ctx.params.get("query") or ctx.message
        outcome = await self.resolver.resolve(
            query,
            ctx.scope_id,
            embedding=ctx.params.get("embedding"),
            limit=ctx.params.get("limit"),
        )

        if not outcome.success:
            return TurnResult(
                success=False,
                intent=Intent.SEARCH.value,
                response_type="error",
                detail_level="none",
                message=outcome.message,
                query=outcome.query or None,
                error=outcome.error,
            )

        return TurnResult(
            success=True,
            intent=Intent.SEARCH.value,
            response_type="search_results",
            detail_level="summary" if outcome.results else "none",
            message=outcome.message,
            results=results_to_dicts(outcome.results),
            query=outcome.query,
            from_cache=outcome.from_cache,
        )

    async def _load_contact(self, intent: Intent, ctx: TurnContext):
        """Resolve the member a contact-style turn refers to.

        Returns a ``ContactResult`` or the failed ``TurnResult`` to send back.
        """
        membership_id = ctx.params.get("membership_id")
        business_name = ctx.params.get("business_name") or extract_business_name(ctx.message)

        if not membership_id and not business_name:
            return _failure(intent, "Please specify a business name or ID to get contact details.", VALIDATION_ERROR)

        try:
            scope_id = ctx.scope_id
            if not scope_id and membership_id:
                scope_id = await self.directory.get_membership_scope(membership_id)
            record = await self.directory.get_member_contact(membership_id, scope_id, business_name)
        except StoreError as e:
            logger.error("Error fetching contact", membership_id=membership_id, error=str(e))
            return _failure(intent, "Unable to load contact. Please try again.", BACKEND_UNAVAILABLE)

        contact = self.formatter.format_contact(record) if record else None
        if contact is None:
            suffix = f' for "{business_name}"' if business_name else ""
            return _failure(intent, f"Contact not found{suffix}. Please check the name and try again.", NOT_FOUND)

        return contact

    def _contact_result(
        self,
        intent: Intent,
        response_type: str,
        contact: ContactResult,
        message: str
    ) -> TurnResult:
        return TurnResult(
            success=True,
            intent=intent.value,
            response_type=response_type,
            detail_level="full",
            message=message,
            results=[contact.to_dict()],
        )

    async def get_contact(self, ctx: TurnContext) -> TurnResult:
        contact = await self._load_contact(Intent.GET_CONTACT, ctx)
        if isinstance(contact, TurnResult):
            return contact

        message = f"📇 **{contact.business_name}**\n"
        if contact.industry != "General":
            message += f"🏷️ {contact.industry}\n"
        if contact.chapter:
            message += f"📍 {contact.chapter}\n"

        return self._contact_result(Intent.GET_CONTACT, "contact_details", contact, message)

    async def about_owner(self, ctx: TurnContext) -> TurnResult:
        contact = await self._load_contact(Intent.ABOUT_OWNER, ctx)
        if isinstance(contact, TurnResult):
            return contact

        about = contact.ai_enhanced_description or contact.short_description
        message = f"📇 **{contact.business_name}**"
        if about:
            message += f"\n\n{about}"

        return self._contact_result(Intent.ABOUT_OWNER, "owner_welcome", contact, message)

    async def book_appointment(self, ctx: TurnContext) -> TurnResult:
        contact = await self._load_contact(Intent.BOOK_APPOINTMENT, ctx)
        if isinstance(contact, TurnResult):
            return contact

        if contact.booking_url:
            message = f"📅 Book an appointment with **{contact.business_name}**:\n{contact.booking_url}"
        else:
            message = (
                f"Online booking is not available for **{contact.business_name}**. "
                "You can call or message them instead."
            )

        return self._contact_result(Intent.BOOK_APPOINTMENT, "booking", contact, message)

    async def call_owner(self, ctx: TurnContext) -> TurnResult:
        contact = await self._load_contact(Intent.CALL_OWNER, ctx)
        if isinstance(contact, TurnResult):
            return contact

        if contact.phone:
            message = f"📞 Call **{contact.business_name}**: {contact.phone_country_code} {contact.phone}"
        else:
            message = f"No phone number is listed for **{contact.business_name}**."

        return self._contact_result(Intent.CALL_OWNER, "contact_details", contact, message)

    async def explore(self, ctx: TurnContext) -> TurnResult:
        try:
            segments = self.formatter.format_segments(await self.directory.list_segments(ctx.scope_id))
        except StoreError as e:
            logger.warning("Segments unavailable for explore", scope_id=ctx.scope_id, error=str(e))
            segments = []

        message = f"🧭 Explore **{ctx.group_name}**\n\n"
        if segments:
            members = sum(s.member_count for s in segments)
            message += f"{_plural(len(segments), 'industry', 'industries')} with {_plural(members, 'member')}.\n\n"
        message += "Pick an industry or type what you are looking for."

        return TurnResult(
            success=True,
            intent=Intent.EXPLORE.value,
            response_type="explore_welcome",
            detail_level="list" if segments else "none",
            message=message,
            results=results_to_dicts(segments),
        )
