"""
Authorization cache - identity to role resolution.

Resolves an external identity to the roles of its linked account. Results
are kept in a process-local cache with a max-age; role-changing writes call
invalidate() for the affected identity before returning.

Key behaviors:
- Unlinked identities resolve to an empty role set, not an error
- Entries older than max_age are refetched on next access
- A fetch that races an invalidation is not written back to the cache
- Role comparison is case-insensitive
"""

from __future__ import annotations

import logging
from datetime import datetime
from threading import Lock
from typing import Protocol

from src.adapters.clock import SystemClock
from src.domain.entities import RoleBinding
from src.rules.models import Rules

logger = logging.getLogger(__name__)


class RoleBindingSourcePort(Protocol):
    def get_binding(self, identity_id: int, now: datetime) -> RoleBinding | None: ...


class TimePort(Protocol):
    def now_utc(self) -> datetime: ...


class RoleCache:
    """Thread-safe map of identity -> RoleBinding with bounded staleness."""

    def __init__(self, max_age_seconds: float = 300) -> None:
        self.max_age_seconds = max_age_seconds
        self._entries: dict[int, RoleBinding] = {}
        self._lock = Lock()
        # Bumped on every invalidation; fills started before a bump are dropped
        self._epoch = 0

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def get(self, identity_id: int, now: datetime) -> RoleBinding | None:
        with self._lock:
            entry = self._entries.get(identity_id)
            if entry is None:
                return None
            if not entry.is_fresh(now, self.max_age_seconds):
                del self._entries[identity_id]
                return None
            return entry

    def put(self, binding: RoleBinding, epoch: int) -> bool:
        with self._lock:
            if epoch != self._epoch:
                return False
            self._entries[binding.identity_id] = binding
            return True

    def invalidate(self, identity_id: int) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.pop(identity_id, None)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity_id: object) -> bool:
        with self._lock:
            return identity_id in self._entries


class AuthorizationService:
    def __init__(
        self,
        source: RoleBindingSourcePort,
        cache: RoleCache | None = None,
        time_port: TimePort | None = None,
    ) -> None:
        self.source = source
        self.cache = cache or RoleCache()
        self.time = time_port or SystemClock()

    def get_binding(self, identity_id: int) -> RoleBinding:
        now = self.time.now_utc()
        cached = self.cache.get(identity_id, now)
        if cached is not None:
            logger.debug("Role cache hit for identity %s", identity_id)
            return cached

        logger.debug("Role cache miss for identity %s", identity_id)
        epoch = self.cache.epoch
        binding = self.source.get_binding(identity_id, now)
        if binding is None:
            binding = RoleBinding(identity_id=identity_id, fetched_at=now)

        if not self.cache.put(binding, epoch):
            logger.debug("Discarded role fetch for identity %s after invalidation", identity_id)
        return binding

    def get_roles(self, identity_id: int) -> frozenset[str]:
        return self.get_binding(identity_id).roles

    def is_in_role(self, identity_id: int, role: str) -> bool:
        wanted = role.strip().lower()
        return any(r.lower() == wanted for r in self.get_roles(identity_id))

    def is_linked(self, identity_id: int) -> bool:
        return self.get_binding(identity_id).account_id is not None

    def invalidate(self, identity_id: int) -> None:
        self.cache.invalidate(identity_id)
        logger.debug("Invalidated cached roles for identity %s", identity_id)

    def invalidate_all(self) -> None:
        self.cache.clear()
        logger.info("Invalidated all cached role bindings")


def create_authorization_service(
    source: RoleBindingSourcePort,
    *,
    rules: Rules | None = None,
    time_port: TimePort | None = None,
) -> AuthorizationService:
    max_age = rules.authz.max_age_seconds if rules is not None else 300
    return AuthorizationService(source, RoleCache(max_age), time_port)
