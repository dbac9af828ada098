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
Guild Player - Per-Guild State

GuildPlayer is plain state: connection, sink, queue, current song, volume,
text channel and the two per-guild tasks (leave timer, queue advance).
Behaviour lives in core.playback and core.connection, which take a player
as their argument.

GuildPlayerRegistry maps guild IDs to players. It is owned by MusicService;
there is no module-level player map.
"""

import asyncio
from collections import deque
from typing import Any, Callable, Iterator, Optional

from loguru import logger

from core.errors import TrackValidationError
from core.playback import PlaybackSession, PlaybackState
from core.track import ResolvedTrack, Track
from core.voice import AudioSink, SinkStatus, VoiceConnection


class GuildPlayer:
    """
    Per-guild music player state.

    Queue model: current_song is popped off the front of ``queue`` before it
    starts loading, so the queue never contains the current song.

    Attributes:
        guild_id: Discord guild ID
        connection: Active voice connection, None when disconnected
        sink: Audio sink, created once with the player and reused across connections
        queue: Upcoming tracks in FIFO order
        current_song: Track loading or playing, None when idle
        state: PlaybackState of the current track
        current_volume: Gain (0.0-2.0) applied to every new resource
        text_channel: Where status announcements go
        advance_task: Task running the most recent queue advance
        join_lock: Held while a voice join is in flight; concurrent /play
            calls wait on it instead of using a half-open connection
        log: Logger bound to this guild
    """

    def __init__(self, guild_id: int, text_channel: Any = None, volume: float = 1.0) -> None:
        self.guild_id = guild_id
        self.connection: Optional[VoiceConnection] = None
        self.sink: Optional[AudioSink] = None

        self.queue: deque[Track] = deque()
        self.current_song: Optional[Track] = None
        self.state = PlaybackState.IDLE
        self.current_volume = volume

        self.text_channel = text_channel

        self.advance_task: Optional[asyncio.Task] = None
        self.join_lock = asyncio.Lock()
        self._leave_task: Optional[asyncio.Task] = None
        # Token for the resource the sink currently owns; see core.playback.
        self._playback_session: Optional[PlaybackSession] = None

        self.log = logger.bind(guild=guild_id)

    @property
    def is_playing(self) -> bool:
        """True while the sink is audibly playing the current song."""
        return (
            self.current_song is not None
            and self.sink is not None
            and self.sink.status is SinkStatus.PLAYING
        )

    @property
    def is_idle(self) -> bool:
        """True when nothing is loading, playing or about to advance."""
        advancing = self.advance_task is not None and not self.advance_task.done()
        return self.state is PlaybackState.IDLE and self.current_song is None and not advancing

    @property
    def leave_timer_armed(self) -> bool:
        return self._leave_task is not None and not self._leave_task.done()

    def enqueue(self, resolved: ResolvedTrack, requested_by: str) -> Track | None:
        """Validate and append a resolved track.

        Returns:
            The queued Track, or None when the resolver data is missing a
            title or URL (nothing is changed in that case)
        """
        try:
            track = Track.from_resolved(resolved, requested_by)
        except TrackValidationError as e:
            self.log.warning(f"rejected track from {requested_by}: {e}")
            return None

        self.queue.append(track)
        self.log.debug(f"queued {track.title!r} at position {len(self.queue)}")
        return track

    def set_text_channel(self, channel: Any) -> None:
        """Point announcements at ``channel`` if it differs from the current one."""
        if channel is None or channel == self.text_channel:
            return
        self.text_channel = channel
        self.log.debug(f"announcements moved to #{getattr(channel, 'name', channel)}")

    def cancel_active_session(self) -> None:
        """Invalidate the current playback session token.

        Sink signals carry the session their resource was created for. Once
        cancelled, late idle/playing signals from that resource are ignored
        instead of advancing the queue a second time.
        """
        if self._playback_session is not None:
            self._playback_session.cancel()
        self._playback_session = None

    def cancel_leave_timer(self) -> None:
        """Cancel if exists and not done."""
        if task := self._leave_task:
            self._leave_task = None
            if not task.done():
                task.cancel()
                self.log.debug("leave timer cancelled")

    def cancel_advance(self) -> None:
        task = self.advance_task
        self.advance_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def reset_playback(self) -> None:
        """Forget the current song and go idle. The queue is kept."""
        self.cancel_active_session()
        self.current_song = None
        self.state = PlaybackState.IDLE


class GuildPlayerRegistry:
    """
    Guild ID -> GuildPlayer map with lazy creation.

    The factory builds a fully wired player (sink attached to the state
    machine); the registry only stores and hands them out.
    """

    def __init__(self, player_factory: Callable[[int], GuildPlayer]) -> None:
        self._factory = player_factory
        self._players: dict[int, GuildPlayer] = {}

    def ensure(self, guild_id: int, text_channel: Any = None) -> GuildPlayer:
        """Return the guild's player, creating it on first use."""
        player = self._players.get(guild_id)
        if player is None:
            player = self._factory(guild_id)
            self._players[guild_id] = player
            player.log.debug("player created")
        player.set_text_channel(text_channel)
        return player

    def get(self, guild_id: int) -> GuildPlayer | None:
        return self._players.get(guild_id)

    def remove(self, guild_id: int) -> GuildPlayer | None:
        player = self._players.pop(guild_id, None)
        if player:
            player.log.debug("player removed")
        return player

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._players

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[GuildPlayer]:
        return iter(list(self._players.values()))
