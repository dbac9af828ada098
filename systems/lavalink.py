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
Lavalink Voice Backend

VoiceGateway and TrackResolver on top of a Lavalink node via mafic.
Lavalink does the fetching and decoding; the bot only sends play/stop/volume.

Track lifecycle comes from mafic's events, dispatched on the bot:
    on_track_start      -> PLAYING
    on_track_end        -> IDLE (REPLACED is ignored, the next track is already starting)
    on_track_exception  -> error, followed by on_track_end
    on_track_stuck      -> logged, followed by on_track_end
"""

import aiohttp
import discord
import mafic
from loguru import logger

from core.errors import StreamResolutionError, TrackNotFoundError, VoiceConnectionError
from core.track import ResolvedTrack
from core.voice import SinkErrorCallback, SinkStatus, SinkStatusCallback
from systems.discord_voice import DiscordGatewayBase
from systems.ytdl import is_url
from utils.formatting import format_duration


def to_resolved(track: mafic.Track) -> ResolvedTrack:
    """Map a mafic Track onto ResolvedTrack."""
    duration = 0 if track.stream else track.length // 1000
    return ResolvedTrack(
        title=track.title,
        url=track.uri,
        duration_seconds=duration,
        duration_formatted="LIVE" if track.stream else (format_duration(duration) if duration else "N/A"),
        thumbnail_url=getattr(track, "artwork_url", None),
    )


def _first_track(result) -> mafic.Track | None:
    if isinstance(result, mafic.Playlist):
        return result.tracks[0] if result.tracks else None
    return result[0] if result else None


def _available_node(pool: mafic.NodePool) -> mafic.Node:
    for node in pool.nodes:
        if node.available:
            return node
    raise StreamResolutionError("music server unavailable")


class LavalinkTrackResolver:
    """TrackResolver that searches through the Lavalink node."""

    def __init__(self, pool: mafic.NodePool, search_type: mafic.SearchType = mafic.SearchType.YOUTUBE) -> None:
        self.pool = pool
        self.search_type = search_type

    async def fetch(self, query: str) -> mafic.Track | None:
        node = _available_node(self.pool)
        try:
            if is_url(query):
                result = await node.fetch_tracks(query)
            else:
                result = await node.fetch_tracks(query, search_type=self.search_type)
        except mafic.TrackLoadException as e:
            raise StreamResolutionError(e.message or str(e)) from e
        except aiohttp.ClientConnectionError as e:
            raise StreamResolutionError(f"music server unreachable: {e}") from e
        return _first_track(result)

    async def resolve(self, query: str) -> ResolvedTrack:
        query = query.strip()
        track = await self.fetch(query)
        if track is None:
            if is_url(query):
                raise StreamResolutionError(f"nothing playable at {query}")
            raise TrackNotFoundError(query)
        logger.debug(f"resolved {query!r} -> {track.title!r}")
        return to_resolved(track)


class PlayerVolume:
    """VolumeControl over mafic.Player (Lavalink volume is a percentage)."""

    def __init__(self, player: mafic.Player, volume: float) -> None:
        self._player = player
        self._volume = volume

    @property
    def volume(self) -> float:
        return self._volume

    async def set_volume(self, value: float) -> None:
        await self._player.set_volume(round(value * 100))
        self._volume = value


class LavalinkResource:
    """AudioResource holding the loaded Lavalink track."""

    def __init__(self, track, session, lavalink_track: mafic.Track, volume_control: PlayerVolume) -> None:
        self.track = track
        self.session = session
        self.lavalink_track = lavalink_track
        self.volume_control = volume_control
        self.player: mafic.Player | None = None

    @property
    def position_ms(self) -> int:
        if self.player is None:
            return 0
        return self.player.position or 0


class LavalinkSink:
    """AudioSink driving a mafic.Player. Status follows mafic's track events."""

    def __init__(self, gateway: "LavalinkGateway", on_status: SinkStatusCallback, on_error: SinkErrorCallback) -> None:
        self._gateway = gateway
        self._on_status = on_status
        self._on_error = on_error
        self._status = SinkStatus.IDLE
        self._resource: LavalinkResource | None = None
        self.player: mafic.Player | None = None

    @property
    def status(self) -> SinkStatus:
        return self._status

    @property
    def resource(self) -> LavalinkResource | None:
        return self._resource

    def attach(self, player: mafic.Player) -> None:
        self.player = player
        self._gateway.bind_sink(player.guild.id, self)

    async def play(self, resource: LavalinkResource) -> None:
        player = self.player
        if player is None or not player.connected:
            raise StreamResolutionError("not connected to voice")

        resource.player = player
        self._resource = resource
        self._status = SinkStatus.BUFFERING
        try:
            await player.play(resource.lavalink_track, volume=round(resource.volume_control.volume * 100))
        except (mafic.PlayerNotConnected, aiohttp.ClientConnectionError) as e:
            self._resource = None
            self._status = SinkStatus.IDLE
            raise StreamResolutionError(str(e)) from e
        except Exception:
            self._resource = None
            self._status = SinkStatus.IDLE
            raise

    async def stop(self, force: bool = False) -> bool:
        resource = self._resource
        if resource is None:
            return False
        if self.player is not None and self.player.connected:
            await self.player.stop()
        if force:
            self._resource = None
            self._status = SinkStatus.IDLE
        return True

    def track_started(self) -> None:
        resource = self._resource
        if resource is None:
            return
        self._status = SinkStatus.PLAYING
        self._on_status(SinkStatus.PLAYING, resource)

    def track_ended(self) -> None:
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        self._status = SinkStatus.IDLE
        self._on_status(SinkStatus.IDLE, resource)

    def track_failed(self, error: Exception) -> None:
        if self._resource is not None:
            self._on_error(error, self._resource)


class LavalinkGateway(DiscordGatewayBase):
    """
    VoiceGateway for Lavalink.

    Connections are mafic.Player voice protocols. mafic dispatches track
    events on the bot, which are routed to the sink bound to that guild.
    """

    client_cls = mafic.Player

    def __init__(self, bot: discord.Client, pool: mafic.NodePool, resolver: LavalinkTrackResolver,
                 connect_timeout: float = 20.0) -> None:
        super().__init__(bot, connect_timeout)
        self.pool = pool
        self.resolver = resolver
        self._sinks: dict[int, LavalinkSink] = {}
        bot.add_listener(self.on_track_start, "on_track_start")
        bot.add_listener(self.on_track_end, "on_track_end")
        bot.add_listener(self.on_track_exception, "on_track_exception")
        bot.add_listener(self.on_track_stuck, "on_track_stuck")

    def bind_sink(self, guild_id: int, sink: LavalinkSink) -> None:
        self._sinks[guild_id] = sink

    def _sink_for(self, player: mafic.Player) -> LavalinkSink | None:
        sink = self._sinks.get(player.guild.id)
        if sink is None or sink.player is not player:
            return None
        return sink

    async def connect(self, channel, *, self_deaf: bool, on_status):
        if not self.pool.nodes:
            raise VoiceConnectionError("music server unavailable")
        return await super().connect(channel, self_deaf=self_deaf, on_status=on_status)

    def create_sink(self, on_status: SinkStatusCallback, on_error: SinkErrorCallback) -> LavalinkSink:
        return LavalinkSink(self, on_status, on_error)

    async def create_resource(self, guild_id: int, track, session, volume: float) -> LavalinkResource:
        connection = self.connection_for(guild_id)
        if connection is None or connection.voice_client is None:
            raise StreamResolutionError("not connected to voice")

        # Tracks are loaded again at play time; an encoded track from resolve may be hours old
        lavalink_track = await self.resolver.fetch(track.url)
        if lavalink_track is None:
            raise StreamResolutionError("no audio stream found")
        return LavalinkResource(track, session, lavalink_track, PlayerVolume(connection.voice_client, volume))

    async def on_track_start(self, event: mafic.TrackStartEvent) -> None:
        if sink := self._sink_for(event.player):
            sink.track_started()

    async def on_track_end(self, event: mafic.TrackEndEvent) -> None:
        # Note: mafic.EndReason values are lowercase ("replaced", not "REPLACED")
        if event.reason == mafic.EndReason.REPLACED:
            return
        if sink := self._sink_for(event.player):
            sink.track_ended()

    async def on_track_exception(self, event: mafic.TrackExceptionEvent) -> None:
        logger.bind(guild=event.player.guild.id).warning(f"track exception: {event.exception}")
        if sink := self._sink_for(event.player):
            sink.track_failed(StreamResolutionError(str(event.exception)))

    async def on_track_stuck(self, event: mafic.TrackStuckEvent) -> None:
        # mafic fires on_track_end after this
        logger.bind(guild=event.player.guild.id).warning(f"track stuck (threshold: {event.threshold_ms}ms)")
