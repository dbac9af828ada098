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

"""In-memory voice backend, resolver and announcer for driving the player core."""

import asyncio
import re
from types import SimpleNamespace

from core.errors import StreamResolutionError, TrackNotFoundError, VoiceConnectionError
from core.track import ResolvedTrack
from core.voice import BaseVoiceConnection, ConnectionStatus, SinkStatus


async def settle(rounds: int = 20) -> None:
    """Let spawned tasks (queue advance, recovery) run to their next await."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def voice_channel(channel_id: int = 100, guild_id: int = 1):
    return SimpleNamespace(id=channel_id, guild=SimpleNamespace(id=guild_id), name=f"voice-{channel_id}")


class FakeTextChannel:
    def __init__(self, name: str = "music") -> None:
        self.name = name
        self.sent = []

    async def send(self, embed=None, **kwargs) -> None:
        self.sent.append(embed)


class FakeConnection(BaseVoiceConnection):
    def __init__(self, channel_id: int, on_status) -> None:
        super().__init__(channel_id, on_status)
        self.subscriptions = []
        self.destroy_calls = 0

    def subscribe(self, sink) -> None:
        super().subscribe(sink)
        self.subscriptions.append(sink)

    def destroy(self) -> None:
        self.destroy_calls += 1
        super().destroy()

    def report(self, status: ConnectionStatus) -> None:
        self._set_status(status)


class FakeVolume:
    def __init__(self, volume: float) -> None:
        self.volume = volume

    async def set_volume(self, value: float) -> None:
        self.volume = value


class FakeResource:
    def __init__(self, track, session, volume_control) -> None:
        self.track = track
        self.session = session
        self.volume_control = volume_control
        self.position_ms = 0


class FakeSink:
    """Sink that reports PLAYING as soon as it plays and IDLE whenever it stops."""

    def __init__(self, on_status, on_error) -> None:
        self._on_status = on_status
        self._on_error = on_error
        self.status = SinkStatus.IDLE
        self.resource = None
        self.played = []
        self.stop_calls = []
        # Raised once by the next play(), after the resource was taken
        self.play_error: Exception | None = None

    async def play(self, resource) -> None:
        self.resource = resource
        if self.play_error is not None:
            error, self.play_error = self.play_error, None
            self.status = SinkStatus.BUFFERING
            raise error
        self.status = SinkStatus.PLAYING
        self.played.append(resource)
        self._on_status(SinkStatus.PLAYING, resource)

    async def stop(self, force: bool = False) -> bool:
        self.stop_calls.append(force)
        if self.resource is None:
            return False
        self.finish()
        return True

    def finish(self) -> None:
        """The current resource ran out."""
        resource = self.resource
        self.resource = None
        self.status = SinkStatus.IDLE
        self._on_status(SinkStatus.IDLE, resource)

    def pause(self) -> None:
        self.status = SinkStatus.PAUSED
        self._on_status(SinkStatus.PAUSED, self.resource)

    def resume(self) -> None:
        self.status = SinkStatus.PLAYING
        self._on_status(SinkStatus.PLAYING, self.resource)

    def fail(self, error: Exception) -> None:
        self._on_error(error, self.resource)


class FakeGateway:
    """
    Args:
        ready: New connections report READY immediately
        fail_connect: connect() raises VoiceConnectionError
        volume_control: Resources support inline volume
    """

    def __init__(self, ready: bool = True, fail_connect: bool = False, volume_control: bool = True) -> None:
        self.ready = ready
        self.fail_connect = fail_connect
        self.volume_control = volume_control
        self.connections: list[FakeConnection] = []
        self.sinks: list[FakeSink] = []
        self.resources: list[FakeResource] = []
        self.failing_urls: set[str] = set()
        self.crashing_urls: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.hang = False

    async def connect(self, channel, *, self_deaf: bool, on_status) -> FakeConnection:
        if self.fail_connect:
            raise VoiceConnectionError("connect refused")
        connection = FakeConnection(channel.id, on_status)
        self.connections.append(connection)
        if self.ready:
            connection.report(ConnectionStatus.CONNECTING)
            connection.report(ConnectionStatus.READY)
        return connection

    def create_sink(self, on_status, on_error) -> FakeSink:
        sink = FakeSink(on_status, on_error)
        self.sinks.append(sink)
        return sink

    async def create_resource(self, guild_id, track, session, volume) -> FakeResource:
        if self.hang:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()
        if track.url in self.crashing_urls:
            raise self.crashing_urls[track.url]
        if track.url in self.failing_urls:
            raise StreamResolutionError("video unavailable")
        resource = FakeResource(track, session, FakeVolume(volume) if self.volume_control else None)
        self.resources.append(resource)
        return resource


class FakeResolver:
    """Resolves any query to a 10 second track, except those listed in not_found."""

    def __init__(self) -> None:
        self.not_found: set[str] = set()
        self.overrides: dict[str, ResolvedTrack] = {}
        self.queries: list[str] = []

    @staticmethod
    def url_for(query: str) -> str:
        return "https://example.com/" + re.sub(r"\W+", "-", query.lower())

    async def resolve(self, query: str) -> ResolvedTrack:
        self.queries.append(query)
        if query in self.overrides:
            return self.overrides[query]
        if query in self.not_found:
            raise TrackNotFoundError(query)
        return ResolvedTrack(title=query, url=self.url_for(query), duration_seconds=10)


class RecordingAnnouncer:
    def __init__(self) -> None:
        self.announcements: list[tuple[int, str, dict]] = []

    def announce(self, player, key: str, **kwargs) -> None:
        self.announcements.append((player.guild_id, key, kwargs))

    def keys(self) -> list[str]:
        return [key for _, key, _ in self.announcements]

    def last(self, key: str) -> dict:
        for _, k, kwargs in reversed(self.announcements):
            if k == key:
                return kwargs
        raise AssertionError(f"{key} was never announced")
