"""Base store interfaces for the directory discovery service.

Defines the abstract contracts the service depends on, independent of the
backing implementation (PostgreSQL stored procedures, Redis, in-memory test
doubles). Three collaborators are described here:

- ``DirectoryStore``: read-only access to the business directory, its vector
  similarity search, membership roster and segment/member listings.
- ``SessionStore``: per-identity conversation sessions.
- ``KeyValueStore``: a small get/set-with-TTL store backing the query cache.

All methods are asynchronous. Implementations raise ``StoreError``
subclasses on failure; callers decide whether the failure is fatal.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class PhoneVariants:
    """Normalized forms of a phone number, in match priority order."""
    exact: str
    country_normalized: str
    suffix: str


@dataclass
class Session:
    """A conversation session as persisted by a ``SessionStore``."""
    session_id: str
    identity_key: str
    scope_id: Optional[str] = None
    channel: str = "chat"
    user_id: Optional[str] = None
    phone: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @property
    def is_member(self) -> bool:
        return bool(self.context.get("is_member", False))

    @property
    def membership_id(self) -> Optional[str]:
        return self.context.get("membership_id")

    @property
    def last_intent(self) -> Optional[str]:
        return self.context.get("last_intent")


class DirectoryStore(ABC):
    """Read access to the business directory of a scope (business group)."""

    @abstractmethod
    async def semantic_search(
        self,
        query_text: str,
        embedding: Sequence[float],
        scope_id: str,
        threshold: float,
        limit: int
    ) -> List[Dict[str, Any]]:
        """Run a vector similarity query.

        Returns
        - Raw hit mappings ordered by descending similarity. The ``similarity``
          value may be a 0-1 fraction or an already-percentage score.
        """
        pass

    @abstractmethod
    async def find_member_by_phone(
        self,
        scope_id: str,
        variants: PhoneVariants
    ) -> Optional[Dict[str, Any]]:
        """Look up the scope's roster; zero or one membership record."""
        pass

    @abstractmethod
    async def list_directory_rows(self, scope_id: str, limit: int) -> List[Dict[str, Any]]:
        """Active directory rows of a scope, used for text fallback search."""
        pass

    @abstractmethod
    async def list_segments(self, scope_id: str) -> List[Dict[str, Any]]:
        """Industry segments with member counts."""
        pass

    @abstractmethod
    async def list_members(
        self,
        scope_id: str,
        segment: Optional[str],
        limit: int,
        offset: int
    ) -> List[Dict[str, Any]]:
        """Members of a scope, optionally filtered to one segment."""
        pass

    @abstractmethod
    async def get_member_contact(
        self,
        membership_id: Optional[str],
        scope_id: Optional[str],
        business_name: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """Full contact record for one member, by id or business name."""
        pass

    @abstractmethod
    async def get_membership_scope(self, membership_id: str) -> Optional[str]:
        """Scope id a membership belongs to (cross-scope contact lookups)."""
        pass

    @abstractmethod
    async def get_group_name(self, scope_id: str) -> Optional[str]:
        """Display name of a scope."""
        pass

    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        return True

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class SessionStore(ABC):
    """Persistence for conversation sessions keyed by identity."""

    @abstractmethod
    async def get_active(self, identity_key: str) -> Optional[Session]:
        """Return the unexpired session for an identity, if any."""
        pass

    @abstractmethod
    async def create(
        self,
        identity_key: str,
        scope_id: Optional[str],
        channel: str,
        user_id: Optional[str],
        phone: Optional[str],
        context: Dict[str, Any],
        ttl_seconds: int
    ) -> Session:
        """Create a new session and return it."""
        pass

    @abstractmethod
    async def update_context(
        self,
        session_id: str,
        context: Dict[str, Any],
        message: Optional[Dict[str, Any]] = None
    ) -> None:
        """Merge ``context`` into the session and append ``message`` to history."""
        pass

    @abstractmethod
    async def end(self, identity_key: str) -> None:
        """End the identity's session. Ending a missing session is a no-op."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class KeyValueStore(ABC):
    """Minimal string key/value store with per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    async def close(self) -> None:
        return None


class StoreError(Exception):
    """Base exception for store operations."""
    pass


class StoreConnectionError(StoreError):
    """Connection error to a backing store."""
    pass


class StoreQueryError(StoreError):
    """Query error in a backing store."""
    pass
