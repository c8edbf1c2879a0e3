"""Keeps Spotify's user queue filled from the context playback started in."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
from typing import Optional, Protocol, Sequence

from vibes.models import Track
from vibes.sources import TrackSource

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50
DEFAULT_LOW_WATER = 10


class QueueTarget(Protocol):
    async def add_to_queue(
        self, uri: str, *, device_id: Optional[str] = None
    ) -> None: ...


@dataclass(frozen=True)
class PrefetchRequest:
    """Work order for one replenishing fetch.

    ``backlog`` holds tracks fetched earlier whose push failed; they go out
    first so order is kept.
    """

    epoch: int
    source: TrackSource
    offset: Optional[int]
    count: int
    backlog: tuple[Track, ...] = ()


@dataclass(frozen=True)
class PrefetchResult:
    request: PrefetchRequest
    pushed: tuple[Track, ...]
    unpushed: tuple[Track, ...]
    next_offset: Optional[int]
    error: Optional[BaseException] = None


class QueuePrefetcher:
    """Owns the QueueBuffer, the look-ahead mirror of tracks we pushed.

    State changes happen only through the synchronous methods, called from
    the dispatcher loop. ``run`` performs the network part of a request and
    reports back through ``complete``.
    """

    def __init__(
        self,
        target: QueueTarget,
        *,
        capacity: int = DEFAULT_CAPACITY,
        low_water: int = DEFAULT_LOW_WATER,
    ) -> None:
        if capacity < 2 or not 0 < low_water < capacity:
            raise ValueError("need 0 < low_water < capacity")
        self._target = target
        self.capacity = capacity
        self.low_water = low_water
        self._buffer: deque[Track] = deque()
        self._backlog: tuple[Track, ...] = ()
        self._source: Optional[TrackSource] = None
        self._cursor: Optional[int] = None
        self._known: dict[str, int] = {}
        self._current_id: Optional[str] = None
        self._epoch = 0
        self._outstanding: Optional[PrefetchRequest] = None
        self._head_rebuilt = False

    @property
    def source(self) -> Optional[TrackSource]:
        return self._source

    @property
    def depth(self) -> int:
        return len(self._buffer)

    @property
    def fetch_outstanding(self) -> bool:
        return self._outstanding is not None

    def buffered(self) -> list[Track]:
        return list(self._buffer)

    def peek(self) -> Optional[Track]:
        return self._buffer[0] if self._buffer else None

    def start(
        self,
        source: TrackSource,
        track: Track,
        offset: int,
        loaded: Sequence[Track] = (),
        offsets: Sequence[int] = (),
    ) -> Optional[PrefetchRequest]:
        """Playback of ``track`` (at ``offset`` within ``source``) was requested.

        ``loaded`` is the part of the source the user was looking at, used to
        recognize later jumps within it. ``offsets`` are the server offsets
        of its entries; without them ``loaded`` must start at offset 0 and
        have no gaps.
        """
        self._reset()
        self._source = source
        self._current_id = track.id
        self._cursor = offset + 1
        positions = offsets or range(len(loaded))
        self._known = {item.id: at for item, at in zip(loaded, positions)}
        self._known.setdefault(track.id, offset)
        logger.info("Queue context %s from offset %s", source.key, offset)
        return self._maybe_request()

    def on_track_started(self, track_id: str) -> Optional[PrefetchRequest]:
        if self._source is None:
            self._current_id = track_id
            return None
        if track_id == self._current_id:
            return self._maybe_request()
        self._current_id = track_id
        position = self._buffer_index(track_id)
        if position is not None:
            for _ in range(position + 1):
                self._buffer.popleft()
            if position:
                logger.debug("Skipped %s buffered tracks", position)
            return self._maybe_request()
        offset = self._known.get(track_id)
        if offset is not None and (self._buffer or self._outstanding is not None):
            # Spotify's queue cannot be cleared; what we pushed still plays next.
            logger.info(
                "Jump to offset %s in %s, keeping %s queued tracks",
                offset,
                self._source.key,
                len(self._buffer),
            )
            return self._maybe_request()
        if offset is not None:
            logger.info(
                "Jump to offset %s in %s, rebuilding queue", offset, self._source.key
            )
            source, known = self._source, self._known
            self._reset()
            self._source = source
            self._known = known
            self._current_id = track_id
            self._cursor = offset + 1
            return self._maybe_request()
        logger.info(
            "Track %s started outside %s, dropping queue context",
            track_id,
            self._source.key,
        )
        self._reset()
        self._current_id = track_id
        return None

    def verify_head(self, remote_next_id: Optional[str]) -> Optional[PrefetchRequest]:
        """Compare the buffer head with what Spotify says plays next."""
        head = self.peek()
        if self._source is None or head is None or remote_next_id == head.id:
            return None
        position = self._buffer_index(remote_next_id) if remote_next_id else None
        if position is not None:
            for _ in range(position):
                self._buffer.popleft()
            return self._maybe_request()
        if self._head_rebuilt:
            logger.warning(
                "Remote next %s still differs from buffer head %s",
                remote_next_id,
                head.id,
            )
            return None
        logger.warning(
            "Remote next %s differs from buffer head %s, re-pushing buffer",
            remote_next_id,
            head.id,
        )
        self._head_rebuilt = True
        self._backlog = tuple(self._buffer) + self._backlog
        self._buffer.clear()
        self._epoch += 1
        self._outstanding = None
        return self._maybe_request()

    def enqueue(self, track: Track) -> None:
        """The user queued ``track`` by hand; it now sits at the remote tail."""
        if self._source is not None:
            self._buffer.append(track)

    def invalidate(self) -> None:
        self._reset()

    def is_current(self, request: PrefetchRequest) -> bool:
        return request.epoch == self._epoch and self._outstanding is request

    async def run(self, request: PrefetchRequest) -> PrefetchResult:
        """Fetch and push the tracks for ``request``. Never raises."""
        tracks = list(request.backlog)
        offset = request.offset
        pushed: list[Track] = []
        try:
            while len(tracks) < request.count and offset is not None:
                wanted = request.count - len(tracks)
                page = await request.source.fetch(offset, wanted)
                tracks.extend(page.items)
                offset = page.next_offset
            for track in tracks:
                if request.epoch != self._epoch:
                    logger.debug("Prefetch epoch %s superseded", request.epoch)
                    break
                await self._target.add_to_queue(track.uri)
                pushed.append(track)
        except Exception as exc:
            logger.warning("Prefetch from %s failed: %s", request.source.key, exc)
            return PrefetchResult(
                request=request,
                pushed=tuple(pushed),
                unpushed=tuple(tracks[len(pushed) :]),
                next_offset=offset,
                error=exc,
            )
        return PrefetchResult(
            request=request,
            pushed=tuple(pushed),
            unpushed=tuple(tracks[len(pushed) :]),
            next_offset=offset,
        )

    def complete(self, result: PrefetchResult) -> bool:
        """Apply a finished request; returns False when it was superseded."""
        if not self.is_current(result.request):
            logger.debug("Discarding stale prefetch (epoch %s)", result.request.epoch)
            return False
        self._outstanding = None
        self._buffer.extend(result.pushed)
        leftover = self._backlog[len(result.request.backlog) :]
        self._backlog = result.unpushed + leftover
        self._cursor = result.next_offset
        logger.debug(
            "Prefetch pushed %s tracks, depth now %s",
            len(result.pushed),
            len(self._buffer),
        )
        return True

    def _maybe_request(self) -> Optional[PrefetchRequest]:
        if self._source is None or self._outstanding is not None:
            return None
        if len(self._buffer) >= self.low_water:
            return None
        if self._cursor is None and not self._backlog:
            return None
        count = self.capacity - len(self._buffer)
        request = PrefetchRequest(
            epoch=self._epoch,
            source=self._source,
            offset=self._cursor,
            count=count,
            backlog=self._backlog[:count],
        )
        self._outstanding = request
        return request

    def _buffer_index(self, track_id: Optional[str]) -> Optional[int]:
        for index, track in enumerate(self._buffer):
            if track.id == track_id:
                return index
        return None

    def _reset(self) -> None:
        self._buffer.clear()
        self._backlog = ()
        self._source = None
        self._cursor = None
        self._known = {}
        self._epoch += 1
        self._outstanding = None
        self._head_rebuilt = False
