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
Music Service - Command Surface

Everything the music commands are allowed to do to a guild's player goes
through MusicService. It owns the player registry and the background tasks
spawned by the state machine, and wires each new player's sink to
core.playback.

Result objects:
    Commands that can be a no-op (skip, stop, leave) return a result with a
    ``reason`` instead of raising. Reasons are messages.yaml keys, so cogs can
    pass them straight to respond().
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Coroutine, Optional

from loguru import logger

from core import connection as voice_lifecycle
from core.announcer import Announcer
from core.errors import (
    NothingPlayingError,
    StreamResolutionError,
    TrackValidationError,
    VoiceConnectionError,
    VolumeUnsupportedError,
)
from core.playback import handle_sink_error, handle_sink_status, play_next
from core.player import GuildPlayer, GuildPlayerRegistry
from core.settings import MAX_VOLUME_PERCENT, PlayerSettings
from core.track import ResolvedTrack, Track
from core.voice import SinkStatus, TrackResolver, VoiceConnection, VoiceGateway


@dataclass(frozen=True, slots=True)
class SkipResult:
    skipped: bool
    title: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StopResult:
    stopped: bool
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LeaveResult:
    left: bool
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class QueueSnapshot:
    now_playing: Optional[Track] = None
    upcoming: list[Track] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class NowPlaying:
    track: Track
    position_ms: int


@dataclass(frozen=True, slots=True)
class PlayOutcome:
    """
    Result of a /play request.

    Attributes:
        track: The queued track
        started: Playback of this track began immediately
        position: 1-based queue position when it was queued behind others,
            0 when it started (or failed to start) right away
    """

    track: Track
    started: bool
    position: int = 0


class MusicService:
    """
    Guild-scoped music player core.

    Args:
        gateway: VoiceGateway backend (FFmpeg or Lavalink)
        resolver: TrackResolver for /play queries
        announcer: Posts status embeds to guild text channels
        settings: Timeouts and limits (defaults when omitted)
    """

    def __init__(
        self,
        gateway: VoiceGateway,
        resolver: TrackResolver,
        announcer: Announcer,
        settings: PlayerSettings | None = None,
    ) -> None:
        self.gateway = gateway
        self.resolver = resolver
        self.announcer = announcer
        self.settings = settings or PlayerSettings()
        self.registry = GuildPlayerRegistry(self._create_player)
        self._tasks: set[asyncio.Task] = set()

    def _create_player(self, guild_id: int) -> GuildPlayer:
        player = GuildPlayer(guild_id, volume=self.settings.default_volume)
        player.sink = self.gateway.create_sink(
            on_status=lambda status, resource: handle_sink_status(self, player, status, resource),
            on_error=lambda error, resource: handle_sink_error(self, player, error, resource),
        )
        return player

    # =========================================================================
    # Background tasks
    # =========================================================================

    def spawn(self, coro: Coroutine, *, name: str | None = None) -> asyncio.Task:
        """Run ``coro`` as a tracked task; failures are logged, not lost."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            logger.opt(exception=exc).error(f"background task {task.get_name()} failed")

    # =========================================================================
    # Commands
    # =========================================================================

    async def _resolve(self, query: str) -> ResolvedTrack:
        timeout = self.settings.resolve_timeout
        try:
            if timeout and timeout > 0:
                return await asyncio.wait_for(self.resolver.resolve(query), timeout)
            return await self.resolver.resolve(query)
        except asyncio.TimeoutError as e:
            raise StreamResolutionError(f'timed out looking up "{query}"') from e

    async def handle_play_command(self, query: str, voice_channel: Any, text_channel: Any,
                                  requested_by: str) -> PlayOutcome:
        """
        Resolve ``query``, queue it, join the caller's channel if needed and
        start playback when the guild is idle.

        Raises:
            TrackNotFoundError: search returned nothing
            StreamResolutionError: lookup failed or timed out
            TrackValidationError: resolver returned no title or URL
            VoiceConnectionError: could not join; the track is not kept in the queue
        """
        guild_id = voice_channel.guild.id
        resolved = await self._resolve(query)

        player = self.registry.ensure(guild_id, text_channel)
        track = player.enqueue(resolved, requested_by)
        if track is None:
            raise TrackValidationError(f'could not queue a track for "{query}"')
        player.log.info(f"{requested_by} queued {track.title!r}")

        # join() publishes the connection before it is ready; a second /play
        # must wait for that join instead of advancing the queue over it
        async with player.join_lock:
            if player.connection is None:
                try:
                    await voice_lifecycle.join(self, player, voice_channel)
                except VoiceConnectionError:
                    if track in player.queue:
                        player.queue.remove(track)
                    raise

        player.cancel_leave_timer()

        if player.is_idle:
            await play_next(self, player)
            if player.current_song is track:
                return PlayOutcome(track=track, started=True)

        # Queued behind other tracks, or 0 when it already failed to start
        try:
            position = list(player.queue).index(track) + 1
        except ValueError:
            position = 0
        return PlayOutcome(track=track, started=False, position=position)

    async def join(self, guild_id: int, voice_channel: Any, text_channel: Any = None) -> VoiceConnection:
        player = self.registry.ensure(guild_id, text_channel)
        async with player.join_lock:
            return await voice_lifecycle.join(self, player, voice_channel)

    async def skip(self, guild_id: int) -> SkipResult:
        """Stop the current track; the idle signal advances to the next one."""
        player = self.registry.get(guild_id)
        if (
            player is None
            or player.current_song is None
            or player.sink is None
            or player.sink.status not in (SinkStatus.PLAYING, SinkStatus.PAUSED)
        ):
            return SkipResult(skipped=False, reason="nothing_to_skip")

        title = player.current_song.title
        await player.sink.stop()
        player.log.info(f"skipped {title!r}")
        return SkipResult(skipped=True, title=title)

    async def stop(self, guild_id: int) -> StopResult:
        """Clear everything, disconnect and forget the guild."""
        player = self.registry.get(guild_id)
        if player is None:
            return StopResult(stopped=False, reason="not_connected")

        player.queue.clear()
        player.reset_playback()
        player.cancel_leave_timer()
        player.cancel_advance()

        if player.sink is not None:
            await player.sink.stop(force=True)

        if (connection := player.connection) is not None:
            player.connection = None
            connection.destroy()

        self.registry.remove(guild_id)
        player.log.info("stopped and disconnected")
        return StopResult(stopped=True)

    async def leave(self, guild_id: int) -> LeaveResult:
        result = await self.stop(guild_id)
        return LeaveResult(left=result.stopped, reason=result.reason)

    async def set_volume(self, guild_id: int, level: int) -> int:
        """
        Set the live resource's gain from a 0-200 percentage.

        Out of range levels are clamped. The value is kept on the player and
        applied to every track loaded afterwards.

        Returns:
            The applied percentage

        Raises:
            NothingPlayingError: no active resource
            VolumeUnsupportedError: the resource has no inline volume
        """
        player = self.registry.get(guild_id)
        resource = player.sink.resource if player and player.sink else None
        if player is None or resource is None or player.current_song is None:
            raise NothingPlayingError("nothing is playing")
        if resource.volume_control is None:
            raise VolumeUnsupportedError("this stream does not support volume changes")

        percent = max(0, min(MAX_VOLUME_PERCENT, int(level)))
        volume = percent / 100
        await resource.volume_control.set_volume(volume)
        player.current_volume = volume
        player.log.info(f"volume set to {percent}%")
        return percent

    # =========================================================================
    # Queries
    # =========================================================================

    def get_queue(self, guild_id: int) -> QueueSnapshot:
        player = self.registry.get(guild_id)
        if player is None:
            return QueueSnapshot()
        return QueueSnapshot(now_playing=player.current_song, upcoming=list(player.queue))

    def get_now_playing(self, guild_id: int) -> NowPlaying | None:
        """Current track and position, only while the sink is playing it."""
        player = self.registry.get(guild_id)
        if player is None or not player.is_playing:
            return None
        resource = player.sink.resource
        if resource is None:
            return None
        return NowPlaying(track=player.current_song, position_ms=resource.position_ms)

    def voice_channel_id(self, guild_id: int) -> int | None:
        player = self.registry.get(guild_id)
        if player is None or player.connection is None:
            return None
        return player.connection.channel_id

    async def shutdown(self) -> None:
        """Tear down every guild (bot exit)."""
        for player in self.registry:
            try:
                await self.stop(player.guild_id)
            except Exception:
                player.log.opt(exception=True).error("failed to stop player during shutdown")

        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.debug("music service shut down")
