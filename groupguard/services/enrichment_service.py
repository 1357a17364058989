"""
groupguard.services.enrichment_service — Occupant profile enrichment
=====================================================================

Watches the tracker for ``Joined`` events that carry a stable id, looks the
occupant up in the directory and feeds the result back through the event
pump as an ``EntityUpdated`` (trust rank, group membership, age flag,
avatar).  Lookups go through a single worker with a fixed gap between
requests, and results are cached (LRU with a TTL) so people who hop in and
out of a session are not fetched twice.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from groupguard.constants import AGE_VERIFIED_MARKER, trust_rank_from_tags
from groupguard.engine.events import EntityUpdated, Joined, PresenceEvent
from groupguard.engine.occupancy import OccupancySnapshot, OccupancyTracker
from groupguard.errors import UpstreamFetchError
from groupguard.services.directory_client import Directory

logger = logging.getLogger(__name__)

CACHE_MAX_ENTRIES = 5000
CACHE_TTL_SECONDS = 2 * 60 * 60


class ProfileCache:
    """Small LRU with per-entry expiry."""

    def __init__(
        self,
        max_entries: int = CACHE_MAX_ENTRIES,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max = max_entries
        self._ttl = ttl
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, EntityUpdated]] = OrderedDict()

    def get(self, key: str) -> EntityUpdated | None:
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self._ttl:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def put(self, key: str, value: EntityUpdated) -> None:
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        while len(self._data) > self._max:
            self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class EnrichmentService:
    def __init__(
        self,
        tracker: OccupancyTracker,
        directory: Directory,
        emit: Callable[[PresenceEvent], None],
        *,
        request_gap: float = 0.25,
        cache: ProfileCache | None = None,
    ) -> None:
        self._tracker = tracker
        self._directory = directory
        self._emit = emit
        self._gap = request_gap
        self._cache = cache or ProfileCache()
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._pending: set[str] = set()
        self._task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        self._unsubscribe = self._tracker.on_occupancy_changed(self._on_change)
        self._task = asyncio.get_running_loop().create_task(
            self._worker(), name="groupguard-enrichment"
        )

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None:
            await self._queue.put(None)
            await self._task
            self._task = None

    # -- observer ------------------------------------------------------------
    def _on_change(self, event: PresenceEvent, snapshot: OccupancySnapshot) -> None:
        if not isinstance(event, Joined) or not event.subject_id:
            return
        self.request(event.subject_id, event.display_name)

    def request(self, user_id: str, display_name: str = "") -> None:
        """Queue an enrichment lookup, answering from cache when possible."""
        cached = self._cache.get(user_id)
        if cached is not None:
            self._emit(cached)
            return
        if user_id in self._pending:
            return
        self._pending.add(user_id)
        self._queue.put_nowait(user_id)

    # -- worker --------------------------------------------------------------
    async def lookup(self, user_id: str) -> EntityUpdated:
        """Fetch one occupant and build the matching ``EntityUpdated``."""
        profile = await self._directory.fetch_candidate_profile(user_id)
        group_id = self._tracker.session.group_id
        is_member = None
        if group_id:
            groups = await self._directory.fetch_group_membership(user_id)
            is_member = group_id in groups
        status = profile.get("ageVerificationStatus")
        return EntityUpdated(
            entity_id=user_id,
            display_name=profile.get("displayName") or "",
            rank=trust_rank_from_tags(profile.get("tags")),
            is_group_member=is_member,
            avatar_url=profile.get("currentAvatarThumbnailImageUrl") or profile.get("avatarUrl"),
            is_age_verified=(
                status == AGE_VERIFIED_MARKER if status is not None
                else profile.get("ageVerified")
            ),
        )

    async def _worker(self) -> None:
        while True:
            user_id = await self._queue.get()
            if user_id is None:
                return
            try:
                update = await self.lookup(user_id)
            except UpstreamFetchError as exc:
                logger.warning("Enrichment for %s failed: %s", user_id, exc)
            else:
                self._cache.put(user_id, update)
                self._emit(update)
            finally:
                self._pending.discard(user_id)
            if self._gap:
                await asyncio.sleep(self._gap)
