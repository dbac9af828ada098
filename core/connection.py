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
Voice Connection Lifecycle

join() acquires a connection for a guild; handle_connection_status() reacts
to what the connection reports afterwards.

Disconnected:
    Discord drops voice briefly on region moves and server restarts. A
    connection that reports SIGNALLING or CONNECTING within the reconnect
    grace period is recovering on its own; otherwise it is destroyed.

Destroyed:
    The single cleanup path, no matter who destroyed the connection (stop,
    failed recovery, kicked by a moderator). The queue survives so a later
    /play picks up where it left off.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from core.errors import VoiceConnectionError
from core.voice import ConnectionStatus, VoiceConnection

if TYPE_CHECKING:
    from core.player import GuildPlayer
    from core.service import MusicService


async def join(service: MusicService, player: GuildPlayer, voice_channel: Any) -> VoiceConnection:
    """
    Connect the guild to ``voice_channel`` and subscribe its sink.

    No-op when already connected to that channel with a ready connection.
    A connection anywhere else is destroyed first.

    Raises:
        VoiceConnectionError: connect failed or the connection was not ready
            within join_timeout. The guild is left disconnected.
    """
    current = player.connection
    if current is not None:
        if current.channel_id == voice_channel.id and current.status is ConnectionStatus.READY:
            return current
        player.log.info(f"dropping voice connection to {current.channel_id} before joining {voice_channel.id}")
        current.destroy()
        if player.connection is current:
            player.connection = None

    def on_status(connection: VoiceConnection, status: ConnectionStatus) -> None:
        handle_connection_status(service, player, connection, status)

    timeout = service.settings.join_timeout
    try:
        connection = await service.gateway.connect(voice_channel, self_deaf=True, on_status=on_status)
    except VoiceConnectionError:
        player.log.warning(f"could not connect to voice channel {voice_channel.id}")
        raise

    player.connection = connection
    try:
        await connection.wait_for(ConnectionStatus.READY, timeout)
    except (asyncio.TimeoutError, VoiceConnectionError) as e:
        player.log.warning(f"voice connection to {voice_channel.id} not ready after {timeout:g}s")
        connection.destroy()
        if player.connection is connection:
            player.connection = None
        raise VoiceConnectionError(f"could not join voice channel {voice_channel.id}") from e

    connection.subscribe(player.sink)
    player.log.info(f"joined voice channel {voice_channel.id}")
    return connection


def handle_connection_status(service: MusicService, player: GuildPlayer,
                             connection: VoiceConnection, status: ConnectionStatus) -> None:
    """Route a connection status change. Signals from replaced connections are ignored."""
    if player.connection is not connection:
        return

    if status is ConnectionStatus.DISCONNECTED:
        player.log.info("voice disconnected, waiting for recovery")
        service.spawn(_recover(service, player, connection), name=f"recover-{player.guild_id}")
    elif status is ConnectionStatus.DESTROYED:
        _handle_destroyed(service, player)


async def _recover(service: MusicService, player: GuildPlayer, connection: VoiceConnection) -> None:
    """Give a dropped connection reconnect_grace seconds to start recovering."""
    grace = service.settings.reconnect_grace
    waits = [
        asyncio.ensure_future(connection.wait_for(ConnectionStatus.SIGNALLING, grace)),
        asyncio.ensure_future(connection.wait_for(ConnectionStatus.CONNECTING, grace)),
    ]
    recovering = False
    try:
        for next_done in asyncio.as_completed(waits):
            try:
                await next_done
            except (asyncio.TimeoutError, VoiceConnectionError):
                continue
            recovering = True
            break
    finally:
        for waiter in waits:
            waiter.cancel()

    if recovering:
        player.log.info("voice connection recovering")
        return

    if connection.status is not ConnectionStatus.DESTROYED:
        player.log.warning(f"voice connection lost for {grace:g}s, destroying")
        connection.destroy()


def _handle_destroyed(service: MusicService, player: GuildPlayer) -> None:
    player.log.info("voice connection destroyed")
    player.connection = None
    player.reset_playback()
    player.cancel_leave_timer()
    if player.sink is not None and (resource := player.sink.resource) is not None:
        service.spawn(_force_stop(player, resource), name=f"sink-stop-{player.guild_id}")


async def _force_stop(player: GuildPlayer, resource) -> None:
    # A rejoin may already have started a new resource by the time this runs.
    if player.sink.resource is resource:
        await player.sink.stop(force=True)
