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
Voice Collaborator Contracts

The player core never touches discord.py or Lavalink directly. It talks to a
VoiceGateway (connections, sinks, audio resources) and a TrackResolver
(query -> metadata). Backends in systems/ implement these protocols; tests
use in-memory fakes.

Signal delivery:
    Connections and sinks report status changes through plain callbacks that
    run on the event loop thread. Backends that receive events on other
    threads (FFmpeg's audio thread) must marshal them with
    loop.call_soon_threadsafe() before invoking a callback.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from loguru import logger

from core.errors import VoiceConnectionError

if TYPE_CHECKING:
    from core.playback import PlaybackSession
    from core.track import ResolvedTrack, Track


class ConnectionStatus(Enum):
    """Lifecycle of a voice connection."""
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


class SinkStatus(Enum):
    """What the audio sink is doing right now."""
    IDLE = "idle"
    BUFFERING = "buffering"
    PLAYING = "playing"
    PAUSED = "paused"


ConnectionStatusCallback = Callable[["VoiceConnection", ConnectionStatus], None]
SinkStatusCallback = Callable[[SinkStatus, Optional["AudioResource"]], None]
SinkErrorCallback = Callable[[Exception, Optional["AudioResource"]], None]


class VolumeControl(Protocol):
    """Inline gain control on a live resource (1.0 = unchanged)."""

    @property
    def volume(self) -> float: ...

    async def set_volume(self, value: float) -> None: ...


class AudioResource(Protocol):
    """A stream ready to be pushed into a sink.

    ``session`` is the PlaybackSession the resource was created for, so sink
    signals can be matched against the player's current session.
    """

    track: Track
    session: PlaybackSession
    volume_control: Optional[VolumeControl]

    @property
    def position_ms(self) -> int: ...


class AudioSink(Protocol):
    """Per-guild audio output, subscribed to the active connection."""

    @property
    def status(self) -> SinkStatus: ...

    @property
    def resource(self) -> Optional[AudioResource]: ...

    async def play(self, resource: AudioResource) -> None: ...

    async def stop(self, force: bool = False) -> bool: ...


class VoiceConnection(Protocol):
    """Transport handle for one guild's voice channel."""

    channel_id: int

    @property
    def status(self) -> ConnectionStatus: ...

    def subscribe(self, sink: AudioSink) -> None: ...

    def destroy(self) -> None: ...

    async def wait_for(self, status: ConnectionStatus, timeout: float) -> None: ...


class VoiceGateway(Protocol):
    """Factory for connections, sinks and audio resources."""

    async def connect(
        self,
        channel: Any,
        *,
        self_deaf: bool,
        on_status: ConnectionStatusCallback,
    ) -> VoiceConnection: ...

    def create_sink(self, on_status: SinkStatusCallback, on_error: SinkErrorCallback) -> AudioSink: ...

    async def create_resource(
        self,
        guild_id: int,
        track: Track,
        session: PlaybackSession,
        volume: float,
    ) -> AudioResource: ...


class TrackResolver(Protocol):
    """Turns a URL or free-text query into track metadata."""

    async def resolve(self, query: str) -> ResolvedTrack: ...


class BaseVoiceConnection:
    """
    Status bookkeeping shared by every VoiceConnection implementation.

    Subclasses report transport events through _set_status(); this class
    fans them out to the owner's callback and to pending wait_for() calls.

    Rules:
        - DESTROYED is terminal. Later status reports are ignored.
        - Waiters still pending when the connection is destroyed fail with
          VoiceConnectionError instead of running into their timeout.
        - Repeated reports of the current status are dropped.
    """

    def __init__(self, channel_id: int, on_status: ConnectionStatusCallback | None = None) -> None:
        self.channel_id = channel_id
        self._status = ConnectionStatus.SIGNALLING
        self._on_status = on_status
        self._waiters: list[tuple[ConnectionStatus, asyncio.Future]] = []
        self.subscribed_sink: AudioSink | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def subscribe(self, sink: AudioSink) -> None:
        self.subscribed_sink = sink

    def destroy(self) -> None:
        self._set_status(ConnectionStatus.DESTROYED)

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._status is ConnectionStatus.DESTROYED or status is self._status:
            return
        logger.debug(f"voice connection {self.channel_id}: {self._status.value} -> {status.value}")
        self._status = status

        for wanted, future in list(self._waiters):
            if future.done():
                continue
            if wanted is status:
                future.set_result(None)
            elif status is ConnectionStatus.DESTROYED:
                future.set_exception(VoiceConnectionError("voice connection destroyed"))

        if self._on_status:
            self._on_status(self, status)

    async def wait_for(self, status: ConnectionStatus, timeout: float) -> None:
        """Wait until the connection reaches ``status``.

        Raises:
            asyncio.TimeoutError: status not reached within timeout
            VoiceConnectionError: connection destroyed while waiting
        """
        if self._status is status:
            return
        if self._status is ConnectionStatus.DESTROYED:
            raise VoiceConnectionError("voice connection destroyed")

        future = asyncio.get_running_loop().create_future()
        entry = (status, future)
        self._waiters.append(entry)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            self._waiters.remove(entry)
