"""Conversation session lifecycle.

A session is keyed by identity (normalized phone digits, or the user id when
no phone is given) and snapshots the caller's directory membership at
creation time. Continuing a session never recomputes membership.

Session persistence is not on the critical path of a turn: any store failure
while starting or continuing yields no session and the turn proceeds as a
guest (fail-open). Turn recording is fire-and-forget.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import structlog

from libs.common.background import SideEffectRunner
from libs.common.metrics import MetricsCollector
from libs.directory_store.base import DirectoryStore, PhoneVariants, Session, SessionStore

logger = structlog.get_logger("discovery_service.session_manager")

# Card and vcard lookups arrive with this phone and never hold a session.
SYSTEM_PHONE = "system"

_NON_DIGITS = re.compile(r"\D")


class SessionAction(str, Enum):
    START = "start"
    CONTINUE = "continue"
    END = "end"


@dataclass
class SessionOutcome:
    """Session resolved for a turn."""
    session: Optional[Session] = None
    is_new: bool = False
    is_member: bool = False

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None


def phone_digits(phone: Optional[str]) -> str:
    return _NON_DIGITS.sub("", phone or "")


def phone_variants(phone: Optional[str], country_code: str = "91") -> Optional[PhoneVariants]:
    """Roster match candidates for a phone number.

    The country-normalized form adds ``country_code`` to a bare 10-digit
    number and strips it from a number that already carries it.
    """
    digits = phone_digits(phone)
    if not digits:
        return None

    country_code = country_code.lstrip("+")
    if len(digits) == 10:
        normalized = country_code + digits
    elif digits.startswith(country_code) and len(digits) == len(country_code) + 10:
        normalized = digits[len(country_code):]
    else:
        normalized = digits

    return PhoneVariants(exact=digits, country_normalized=normalized, suffix=digits[-10:])


class SessionManager:
    """Starts, continues and ends sessions and records turns.

    Parameters
    - store: ``SessionStore`` persisting sessions
    - directory: ``DirectoryStore`` used for the membership roster lookup
    - side_effects: Runner for fire-and-forget turn recording
    - ttl_seconds: Session lifetime, enforced by the store on read
    - country_code: Default dialling prefix for phone normalization
    """

    def __init__(
        self,
        store: SessionStore,
        directory: DirectoryStore,
        side_effects: SideEffectRunner,
        ttl_seconds: int = 1800,
        country_code: str = "91",
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.directory = directory
        self.side_effects = side_effects
        self.ttl_seconds = ttl_seconds
        self.country_code = country_code
        self.metrics = metrics

    @staticmethod
    def identity_key(phone: Optional[str], user_id: Optional[str]) -> Optional[str]:
        digits = phone_digits(phone)
        if digits:
            return digits
        return user_id or None

    def _record(self, action: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_session_operation(action, outcome)

    async def handle(
        self,
        action: SessionAction,
        scope_id: Optional[str],
        channel: str,
        phone: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> SessionOutcome:
        """Apply a session action for the caller's identity."""
        if phone == SYSTEM_PHONE:
            return SessionOutcome()

        identity_key = self.identity_key(phone, user_id)
        if identity_key is None:
            return SessionOutcome()

        if action == SessionAction.END:
            await self.end(identity_key)
            return SessionOutcome()

        try:
            if action == SessionAction.CONTINUE:
                session = await self.store.get_active(identity_key)
                if session is not None:
                    self._record("continue", "success")
                    return SessionOutcome(session=session, is_new=False, is_member=session.is_member)
            else:
                await self.store.end(identity_key)

            return await self._start(identity_key, scope_id, channel, phone, user_id)

        except Exception as e:
            logger.error(
                "Session handling failed, continuing without session",
                action=action.value,
                error=str(e)
            )
            self._record(action.value, "error")
            return SessionOutcome()

    async def _start(
        self,
        identity_key: str,
        scope_id: Optional[str],
        channel: str,
        phone: Optional[str],
        user_id: Optional[str]
    ) -> SessionOutcome:
        member = await self._lookup_membership(scope_id, phone)
        context: Dict[str, Any] = {
            "is_member": member is not None,
            "membership_id": member.get("membership_id") if member else None,
        }

        session = await self.store.create(
            identity_key=identity_key,
            scope_id=scope_id,
            channel=channel,
            user_id=user_id,
            phone=phone,
            context=context,
            ttl_seconds=self.ttl_seconds,
        )
        self._record("start", "success")

        logger.info(
            "Session started",
            session_id=session.session_id,
            scope_id=scope_id,
            channel=channel,
            is_member=context["is_member"]
        )
        return SessionOutcome(session=session, is_new=True, is_member=context["is_member"])

    async def _lookup_membership(
        self,
        scope_id: Optional[str],
        phone: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """First roster match over the phone variants; guests get ``None``."""
        variants = phone_variants(phone, self.country_code)
        if variants is None or not scope_id:
            return None

        try:
            return await self.directory.find_member_by_phone(scope_id, variants)
        except Exception as e:
            logger.warning("Membership lookup failed, treating as guest", scope_id=scope_id, error=str(e))
            return None

    async def end(self, identity_key: str) -> None:
        """End the identity's session; missing sessions and store errors are ignored."""
        try:
            await self.store.end(identity_key)
            self._record("end", "success")
        except Exception as e:
            logger.warning("Failed to end session", error=str(e))
            self._record("end", "error")

    def record_turn(self, session: Optional[Session], intent: str, message: Optional[str] = None) -> None:
        """Append the turn to the session history without waiting for the store."""
        if session is None:
            return

        entry: Dict[str, Any] = {"role": "user", "intent": intent}
        if message:
            entry["content"] = message

        self.side_effects.spawn(
            self.store.update_context(session.session_id, {"last_intent": intent}, message=entry),
            operation="session.record_turn",
        )
