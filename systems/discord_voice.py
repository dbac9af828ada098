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
Discord Voice Connections

Connection handling shared by both audio backends. The FFmpeg backend
connects with discord.py's VoiceClient, the Lavalink backend with
mafic.Player; everything else about the connection is the same.

Connection status:
    discord.py has no status events, so the gateway listens to the bot's own
    voice state updates:
        left voice (kicked, channel deleted) -> DISCONNECTED
        back in a channel after a drop      -> SIGNALLING, then READY
        moved to another channel            -> channel_id updated
"""

import asyncio
from typing import Any

import discord
from loguru import logger

from core.errors import VoiceConnectionError
from core.voice import BaseVoiceConnection, ConnectionStatus, ConnectionStatusCallback

# Track fire-and-forget tasks to prevent GC warnings
_background_tasks: set[asyncio.Task] = set()


def spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def is_voice_connected(voice_client: Any) -> bool:
    """VoiceClient exposes is_connected(), mafic.Player a ``connected`` property."""
    if hasattr(voice_client, "is_connected"):
        return voice_client.is_connected()
    return bool(getattr(voice_client, "connected", False))


class DiscordVoiceConnection(BaseVoiceConnection):
    """VoiceConnection around a discord.py voice protocol (VoiceClient or mafic.Player)."""

    def __init__(self, channel: discord.VoiceChannel, on_status: ConnectionStatusCallback,
                 timeout: float, client_cls: type = discord.VoiceClient) -> None:
        super().__init__(channel.id, on_status)
        self.channel = channel
        self.guild_id = channel.guild.id
        self.voice_client: Any = None
        self._timeout = timeout
        self._client_cls = client_cls
        self._connect_task: asyncio.Task | None = None

    @property
    def log(self):
        return logger.bind(guild=self.guild_id)

    def start(self, self_deaf: bool) -> None:
        self._connect_task = spawn(self._connect(self_deaf))

    async def _connect(self, self_deaf: bool) -> None:
        self._set_status(ConnectionStatus.CONNECTING)

        # A voice client we no longer track (e.g. left over from a crash) blocks connect()
        stale = self.channel.guild.voice_client
        if stale is not None:
            await stale.disconnect(force=True)

        try:
            voice_client = await self.channel.connect(
                cls=self._client_cls, timeout=self._timeout, reconnect=True, self_deaf=self_deaf
            )
        except (discord.DiscordException, asyncio.TimeoutError) as e:
            self.log.warning(f"voice connect to #{self.channel.name} failed: {e}")
            self.destroy()
            return

        if self.status is ConnectionStatus.DESTROYED:
            await voice_client.disconnect(force=True)
            return

        self.voice_client = voice_client
        if self.subscribed_sink is not None:
            self.subscribed_sink.attach(voice_client)
        self._set_status(ConnectionStatus.READY)

    def subscribe(self, sink) -> None:
        super().subscribe(sink)
        if self.voice_client is not None:
            sink.attach(self.voice_client)

    def destroy(self) -> None:
        if self.status is ConnectionStatus.DESTROYED:
            return
        voice_client = self.voice_client
        self._set_status(ConnectionStatus.DESTROYED)

        task = self._connect_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if voice_client is not None and is_voice_connected(voice_client):
            spawn(voice_client.disconnect(force=True))

    def on_bot_voice_state(self, before: discord.VoiceState, after: discord.VoiceState) -> None:
        """Translate the bot's own voice state changes into connection status."""
        if after.channel is None:
            if self.status is ConnectionStatus.READY:
                self._set_status(ConnectionStatus.DISCONNECTED)
            return

        if before.channel is not None and before.channel.id != after.channel.id:
            self.log.info(f"moved to #{after.channel.name}")
            self.channel_id = after.channel.id
            self.channel = after.channel

        if self.status is ConnectionStatus.DISCONNECTED:
            self._set_status(ConnectionStatus.SIGNALLING)
            self._set_status(ConnectionStatus.READY)


class DiscordGatewayBase:
    """
    connect() and voice state tracking for discord.py based gateways.

    Subclasses set ``client_cls`` and implement create_sink() and
    create_resource().
    """

    client_cls: type = discord.VoiceClient

    def __init__(self, bot: discord.Client, connect_timeout: float = 20.0) -> None:
        self.bot = bot
        self.connect_timeout = connect_timeout
        self._connections: dict[int, DiscordVoiceConnection] = {}
        bot.add_listener(self.on_voice_state_update, "on_voice_state_update")

    def connection_for(self, guild_id: int) -> DiscordVoiceConnection | None:
        return self._connections.get(guild_id)

    async def connect(self, channel: Any, *, self_deaf: bool,
                      on_status: ConnectionStatusCallback) -> DiscordVoiceConnection:
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            raise VoiceConnectionError(f"{channel!r} is not a voice channel")

        guild_id = channel.guild.id

        def track_status(connection: DiscordVoiceConnection, status: ConnectionStatus) -> None:
            if status is ConnectionStatus.DESTROYED and self._connections.get(guild_id) is connection:
                del self._connections[guild_id]
            on_status(connection, status)

        connection = DiscordVoiceConnection(channel, track_status, self.connect_timeout, self.client_cls)
        self._connections[guild_id] = connection
        connection.start(self_deaf)
        return connection

    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState,
                                    after: discord.VoiceState) -> None:
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        if connection := self._connections.get(member.guild.id):
            connection.on_bot_voice_state(before, after)
