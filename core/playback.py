# Copyright (C) 2026 grodz
#
# This file is part of Tempo.
#
# Tempo is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Playback Functions

Queue advancement, track start-up and the reaction to sink signals.

State machine (per guild):
    IDLE    --queue non-empty-->       LOADING
    LOADING --resource playing-->      PLAYING
    LOADING --stream failed/timeout--> IDLE (report, try the next track)
    PLAYING --sink idle-->             IDLE (advance queue)
    any     --sink error-->            ERROR (the idle signal that follows advances)
    any     --stop/destroyed-->        IDLE

All functions take the MusicService (settings, gateway, announcer) and the
guild's GuildPlayer. They run on the event loop; sink callbacks are already
marshalled onto it by the backend.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Optional

from core.errors import StreamResolutionError
from core.voice import AudioResource, SinkStatus

if TYPE_CHECKING:
    from core.player import GuildPlayer
    from core.service import MusicService
    from core.track import Track


class PlaybackState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


_SESSION_IDS = count(1)


@dataclass(slots=True)
class PlaybackSession:
    """Token that scopes sink signals to a specific play attempt.

    Each session gets a unique ``id``; the resource created for it carries the
    session, so a signal can be checked against the player's current one.
    ``cancelled`` is set on stop, teardown, or once the track has finished, and
    any signal arriving for a cancelled session is ignored.
    """

    id: int = field(default_factory=lambda: next(_SESSION_IDS))
    track_id: Optional[int] = None
    cancelled: bool = False

    def cancel(self) -> None:
        """Mark the session as cancelled so callbacks know to exit early."""
        self.cancelled = True


def _is_current(player: GuildPlayer, session: PlaybackSession) -> bool:
    return player._playback_session is session and not session.cancelled


async def _acquire_resource(service: MusicService, player: GuildPlayer, track: Track,
                            session: PlaybackSession) -> AudioResource:
    coro = service.gateway.create_resource(player.guild_id, track, session, player.current_volume)
    timeout = service.settings.stream_timeout
    if timeout and timeout > 0:
        return await asyncio.wait_for(coro, timeout)
    return await coro


async def start_track(service: MusicService, player: GuildPlayer, track: Track) -> bool:
    """
    Load ``track`` and hand it to the sink.

    Returns:
        True when the caller should stop advancing: the track is playing, or
        the attempt was superseded (stop, disconnect) while loading.
        False when the track failed and the next one should be tried.

    Side effects:
        - current_song = track, state LOADING while the stream is opened
        - On failure: state IDLE, "stream_failed" announced in the text channel.
          Unexpected errors from the backend count as a failure of this track
          too, so the guild never stays stuck in LOADING.
    """
    player.cancel_active_session()
    session = PlaybackSession(track_id=track.track_id)
    player._playback_session = session
    player.current_song = track
    player.state = PlaybackState.LOADING
    player.log.debug(f"loading {track.title!r}")

    resource = None
    try:
        resource = await _acquire_resource(service, player, track, session)
        if not _is_current(player, session) or player.connection is None:
            player.log.debug(f"discarding stream for {track.title!r}, playback was stopped while loading")
            return True
        await player.sink.play(resource)
        return True
    except asyncio.TimeoutError:
        error = f"timed out after {service.settings.stream_timeout:g}s"
        player.log.warning(f"stream for {track.title!r} {error}")
    except StreamResolutionError as e:
        error = str(e)
        player.log.warning(f"could not stream {track.title!r}: {e}")
    except Exception as e:
        error = str(e) or type(e).__name__
        player.log.opt(exception=True).error(f"unexpected error starting {track.title!r}")

    if not _is_current(player, session):
        return True

    player.reset_playback()
    # A sink that failed half way may still hold the resource
    if resource is not None and player.sink.resource is resource:
        await player.sink.stop(force=True)
    service.announcer.announce(player, "stream_failed", title=track.title, error=error)
    return False


async def play_next(service: MusicService, player: GuildPlayer, last_track: Track | None = None) -> None:
    """
    Advance the queue until a track starts or the queue runs dry.

    Each track gets one attempt. After ``max_consecutive_failures`` failures
    in a row the rest of the queue is dropped. When the queue is empty, the
    "queue_empty" notice is only sent if ``last_track`` just finished, and the
    leave timer is armed.
    """
    failures = 0
    limit = service.settings.max_consecutive_failures

    while True:
        if not player.queue:
            player.reset_playback()
            if last_track is not None:
                player.log.info("queue finished")
                service.announcer.announce(player, "queue_empty")
            if player.connection is not None:
                arm_leave_timer(service, player)
            return

        if player.connection is None:
            player.log.warning("cannot advance queue, not connected")
            player.reset_playback()
            service.announcer.announce(player, "not_connected")
            return

        track = player.queue.popleft()
        if await start_track(service, player, track):
            return

        failures += 1
        last_track = None
        if failures >= limit:
            dropped = len(player.queue)
            player.queue.clear()
            player.log.error(f"{failures} tracks failed in a row, dropped {dropped} queued tracks")
            service.announcer.announce(player, "too_many_failures", failures=failures, dropped=dropped)
            if player.connection is not None:
                arm_leave_timer(service, player)
            return


def schedule_advance(service: MusicService, player: GuildPlayer, last_track: Track | None) -> asyncio.Task:
    """Run play_next in a tracked task (sink callbacks cannot await)."""
    task = service.spawn(play_next(service, player, last_track), name=f"advance-{player.guild_id}")
    player.advance_task = task
    return task


def handle_sink_status(service: MusicService, player: GuildPlayer,
                       status: SinkStatus, resource: AudioResource | None) -> None:
    """React to a sink status change for ``resource``."""
    session = player._playback_session
    if resource is None or session is None or resource.session is not session or session.cancelled:
        player.log.debug(f"ignoring stale sink signal: {status.value}")
        return

    if status is SinkStatus.PLAYING:
        if player.state is PlaybackState.PAUSED:
            player.state = PlaybackState.PLAYING
            return
        player.state = PlaybackState.PLAYING
        player.cancel_leave_timer()
        track = resource.track
        player.log.info(f"now playing {track.title!r} requested by {track.requested_by}")
        service.announcer.announce(
            player,
            "now_playing",
            title=track.title,
            duration=track.duration_formatted,
            requester=track.requested_by,
            thumbnail=track.thumbnail_url,
        )

    elif status is SinkStatus.PAUSED:
        player.state = PlaybackState.PAUSED

    elif status is SinkStatus.IDLE:
        finished = player.current_song
        player.reset_playback()
        player.log.debug(f"finished {finished.title!r}" if finished else "sink went idle")
        schedule_advance(service, player, finished)


def handle_sink_error(service: MusicService, player: GuildPlayer,
                      error: Exception, resource: AudioResource | None) -> None:
    """Mark the current track as failed; the idle signal that follows advances the queue."""
    session = player._playback_session
    if resource is not None and (resource.session is not session or resource.session.cancelled):
        player.log.debug(f"ignoring error from stale resource: {error}")
        return

    player.state = PlaybackState.ERROR
    title = resource.track.title if resource else "unknown"
    player.log.opt(exception=error).error(f"audio player error on {title!r}")
    service.announcer.announce(player, "player_error", title=title, error=str(error))


def arm_leave_timer(service: MusicService, player: GuildPlayer) -> None:
    """Start the idle-leave countdown, replacing any pending one."""
    player.cancel_leave_timer()
    timeout = service.settings.leave_timeout
    if timeout <= 0:
        return
    player._leave_task = service.spawn(
        _leave_countdown(service, player, timeout), name=f"leave-{player.guild_id}"
    )
    player.log.debug(f"starting {timeout:g}s leave timer")


async def _leave_countdown(service: MusicService, player: GuildPlayer, timeout: float) -> None:
    """Leave the channel once the queue has stayed empty for ``timeout`` seconds."""
    try:
        await asyncio.sleep(timeout)
    except asyncio.CancelledError:
        return  # Activity resumed

    player._leave_task = None
    if service.registry.get(player.guild_id) is not player:
        return
    if player.queue or player.current_song is not None or player.connection is None:
        return

    player.log.info("idle timeout, leaving voice")
    service.announcer.announce(player, "leaving_idle")
    await service.leave(player.guild_id)
