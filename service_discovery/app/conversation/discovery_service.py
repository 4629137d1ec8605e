"""Discovery turn orchestration.

``DiscoveryService.handle_turn`` runs one conversational turn end to end:
validate, resolve intent, apply the session action, route to a capability
handler and assemble the response envelope. It never raises; failures are
returned as envelopes with ``success=False`` and an error code.
"""

import re
import time
from typing import Optional
import structlog

from libs.common.logging import bind_log_context, bound_log_context, log_performance
from libs.common.metrics import MetricsCollector
from libs.directory_store.base import DirectoryStore
from ..channels.whatsapp import template_fields
from ..errors import INTERNAL_ERROR, InvalidRequestError
from ..handlers.directory_handlers import DirectoryHandlers, TurnContext, TurnResult
from ..models import DiscoveryRequest, DiscoveryResponse
from .intent_resolver import Intent, IntentResolver, parse_channel, parse_intent
from .session_manager import SessionAction, SessionManager, SessionOutcome

logger = structlog.get_logger("discovery_service.service")

_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def validate_request(request: DiscoveryRequest) -> None:
    """Raise ``InvalidRequestError`` for requests that cannot be served."""
    if not request.group_id and parse_intent(request.intent) != Intent.GET_CONTACT:
        raise InvalidRequestError("group_id is required")

    if request.group_id and not _UUID.match(request.group_id):
        raise InvalidRequestError("Invalid group_id format")

    if not request.message and not request.intent:
        raise InvalidRequestError("Either message or intent is required")

    if not request.phone and not request.user_id:
        raise InvalidRequestError("Either phone or user_id is required")


class DiscoveryService:
    """Conversational directory discovery.

    Parameters
    - directory: ``DirectoryStore`` used for the group name lookup
    - sessions: ``SessionManager``
    - handlers: ``DirectoryHandlers`` implementing each intent
    - default_group_name: Shown when a group has no name or lookup fails
    """

    def __init__(
        self,
        directory: DirectoryStore,
        sessions: SessionManager,
        handlers: DirectoryHandlers,
        intent_resolver: Optional[IntentResolver] = None,
        default_group_name: str = "Business Directory",
        metrics: Optional[MetricsCollector] = None
    ):
        self.directory = directory
        self.sessions = sessions
        self.handlers = handlers
        self.intent_resolver = intent_resolver or IntentResolver()
        self.default_group_name = default_group_name
        self.metrics = metrics

    async def group_name(self, scope_id: Optional[str]) -> str:
        """Display name of the scope; never fails the turn."""
        if not scope_id:
            return self.default_group_name
        try:
            name = await self.directory.get_group_name(scope_id)
        except Exception as e:
            logger.warning("Group name lookup failed", scope_id=scope_id, error=str(e))
            return self.default_group_name
        return name or self.default_group_name

    async def handle_turn(self, request: DiscoveryRequest) -> DiscoveryResponse:
        """Process one turn and return the response envelope."""
        with bound_log_context(channel=request.channel, group_id=request.group_id, intent=None):
            return await self._handle_turn(request)

    async def _handle_turn(self, request: DiscoveryRequest) -> DiscoveryResponse:
        start_time = time.perf_counter()
        channel = parse_channel(request.channel)
        intent_name = Intent.UNKNOWN.value

        try:
            validate_request(request)

            action = SessionAction(request.session_action or SessionAction.CONTINUE.value)
            explicit = parse_intent(request.intent)
            if action == SessionAction.END and explicit is None:
                intent = Intent.GOODBYE
            else:
                intent = self.intent_resolver.resolve(request.intent, request.message, channel)
            if intent == Intent.GOODBYE:
                action = SessionAction.END
            intent_name = intent.value
            bind_log_context(intent=intent_name)

            outcome = await self.sessions.handle(
                action,
                request.group_id,
                channel.value,
                phone=request.phone,
                user_id=request.user_id,
            )
            group_name = await self.group_name(request.group_id)

            ctx = TurnContext(
                scope_id=request.group_id,
                group_name=group_name,
                channel=channel.value,
                message=request.message,
                params=request.params.model_dump(),
                is_member=outcome.is_member,
            )
            result = await self.handlers.handle(intent, ctx)

            if action != SessionAction.END:
                self.sessions.record_turn(outcome.session, intent.value, request.message)

            response = self._envelope(request, result, outcome, group_name, channel.value, start_time)

        except InvalidRequestError as e:
            logger.info("Rejected invalid request", error=e.message)
            response = self._failure(request, channel.value, e.message, e.code, start_time)

        except Exception as e:
            logger.error("Error processing discovery turn", intent=intent_name, error=str(e))
            response = self._failure(
                request,
                channel.value,
                "An error occurred processing your request.",
                INTERNAL_ERROR,
                start_time,
            )

        if self.metrics is not None:
            self.metrics.record_turn(response.intent, response.channel, response.success)

        log_performance(
            "discovery_turn",
            response.duration_ms,
            intent=response.intent,
            response_type=response.response_type,
            success=response.success,
            results_count=response.results_count,
        )
        return response

    def _envelope(
        self,
        request: DiscoveryRequest,
        result: TurnResult,
        outcome: SessionOutcome,
        group_name: str,
        channel: str,
        start_time: float
    ) -> DiscoveryResponse:
        return DiscoveryResponse(
            success=result.success,
            intent=result.intent,
            response_type=result.response_type,
            detail_level=result.detail_level,
            message=result.message,
            results=result.results,
            results_count=result.results_count,
            total_count=result.total_count,
            query=result.query,
            filters=result.filters,
            session_id=outcome.session_id,
            is_new_session=outcome.is_new,
            is_member=outcome.is_member,
            group_id=request.group_id or "",
            group_name=group_name,
            channel=channel,
            from_cache=result.from_cache,
            duration_ms=_elapsed_ms(start_time),
            error=result.error,
            **template_fields(channel, result, group_name, outcome.is_member),
        )

    def _failure(
        self,
        request: DiscoveryRequest,
        channel: str,
        message: str,
        error: str,
        start_time: float
    ) -> DiscoveryResponse:
        failure = TurnResult(
            success=False,
            intent=Intent.UNKNOWN.value,
            response_type="error",
            detail_level="none",
            message=message,
            error=error,
        )
        return DiscoveryResponse(
            success=False,
            intent=failure.intent,
            response_type=failure.response_type,
            detail_level=failure.detail_level,
            message=message,
            group_id=request.group_id or "",
            channel=channel,
            duration_ms=_elapsed_ms(start_time),
            error=error,
            **template_fields(channel, failure, "", False),
        )


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)
