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

import asyncio

import pytest

from core.errors import VoiceConnectionError
from core.playback import PlaybackState
from core.voice import BaseVoiceConnection, ConnectionStatus
from tests.fakes import settle, voice_channel

GUILD = 1


async def test_join_same_channel_twice_is_idempotent(service, gateway, channel):
    first = await service.join(GUILD, channel)
    second = await service.join(GUILD, channel)

    assert first is second
    assert len(gateway.connections) == 1
    assert len(first.subscriptions) == 1
    assert first.destroy_calls == 0


async def test_join_other_channel_replaces_connection(service, gateway, channel):
    first = await service.join(GUILD, channel)
    second = await service.join(GUILD, voice_channel(channel_id=200))

    assert first.status is ConnectionStatus.DESTROYED
    assert service.registry.get(GUILD).connection is second
    assert second.channel_id == 200


async def test_join_times_out_when_never_ready(service, gateway, channel):
    gateway.ready = False

    with pytest.raises(VoiceConnectionError):
        await service.join(GUILD, channel)

    assert service.registry.get(GUILD).connection is None
    assert gateway.connections[0].status is ConnectionStatus.DESTROYED


async def test_second_play_waits_for_join_in_flight(make_service, gateway, channel, text_channel):
    service = make_service(join_timeout=5.0)
    gateway.ready = False

    first = asyncio.create_task(service.handle_play_command("a", channel, text_channel, "alice"))
    await settle()
    connection = gateway.connections[0]
    sink = gateway.sinks[0]
    seen = []
    sink_play = sink.play

    async def recording_play(resource):
        seen.append((resource.track.title, connection.status, len(connection.subscriptions)))
        await sink_play(resource)

    sink.play = recording_play

    second = asyncio.create_task(service.handle_play_command("b", channel, text_channel, "bob"))
    await settle()

    player = service.registry.get(GUILD)
    assert seen == []
    assert [t.title for t in player.queue] == ["a", "b"]

    connection.report(ConnectionStatus.CONNECTING)
    connection.report(ConnectionStatus.READY)
    first_outcome, second_outcome = await asyncio.gather(first, second)

    assert seen == [("a", ConnectionStatus.READY, 1)]
    assert first_outcome.started
    assert not second_outcome.started
    assert second_outcome.position == 1
    assert [t.title for t in player.queue] == ["b"]
    assert len(gateway.connections) == 1


async def test_disconnect_that_recovers_keeps_connection(service, play, gateway):
    await play("track a")
    connection = gateway.connections[0]

    connection.report(ConnectionStatus.DISCONNECTED)
    await settle()
    connection.report(ConnectionStatus.SIGNALLING)
    connection.report(ConnectionStatus.READY)
    await asyncio.sleep(0.1)

    player = service.registry.get(GUILD)
    assert connection.status is ConnectionStatus.READY
    assert player.connection is connection
    assert player.current_song.title == "track a"


async def test_disconnect_without_recovery_destroys(service, play, gateway):
    await play("track a")
    await play("track b")
    connection = gateway.connections[0]

    connection.report(ConnectionStatus.DISCONNECTED)
    await asyncio.sleep(0.1)
    await settle()

    player = service.registry.get(GUILD)
    assert connection.status is ConnectionStatus.DESTROYED
    assert player.connection is None
    assert player.current_song is None
    assert player.state is PlaybackState.IDLE
    # Queue survives for the next /play
    assert [t.title for t in player.queue] == ["track b"]
    assert gateway.sinks[0].stop_calls == [True]


async def test_destroyed_connection_cancels_leave_timer(service, play, gateway):
    await play("track a")
    gateway.sinks[0].finish()
    await settle()
    player = service.registry.get(GUILD)
    assert player.leave_timer_armed

    gateway.connections[0].destroy()

    assert player.connection is None
    assert not player.leave_timer_armed


async def test_next_play_rejoins_after_destroy(service, play, gateway):
    await play("track a")
    await play("track b")
    gateway.connections[0].destroy()
    await settle()

    outcome = await play("track c")

    player = service.registry.get(GUILD)
    assert len(gateway.connections) == 2
    assert player.connection is gateway.connections[1]
    assert not outcome.started
    assert outcome.position == 1
    assert player.current_song.title == "track b"
    assert [t.title for t in player.queue] == ["track c"]


async def test_signals_from_replaced_connection_are_ignored(service, gateway, channel):
    old = await service.join(GUILD, channel)
    new = await service.join(GUILD, voice_channel(channel_id=200))

    # Destroyed connections stay silent; DISCONNECTED from the old one must not start recovery
    old._status = ConnectionStatus.READY
    old.report(ConnectionStatus.DISCONNECTED)
    await asyncio.sleep(0.1)

    assert service.registry.get(GUILD).connection is new
    assert new.status is ConnectionStatus.READY


# =============================================================================
# BaseVoiceConnection
# =============================================================================

async def test_wait_for_returns_when_status_reached():
    connection = BaseVoiceConnection(1)

    waiter = asyncio.create_task(connection.wait_for(ConnectionStatus.READY, 1))
    await settle()
    connection._set_status(ConnectionStatus.READY)

    await waiter
    assert connection.status is ConnectionStatus.READY


async def test_wait_for_fails_fast_on_destroy():
    connection = BaseVoiceConnection(1)

    waiter = asyncio.create_task(connection.wait_for(ConnectionStatus.READY, 5))
    await settle()
    connection.destroy()

    with pytest.raises(VoiceConnectionError):
        await waiter


async def test_destroyed_is_terminal():
    seen = []
    connection = BaseVoiceConnection(1, on_status=lambda conn, status: seen.append(status))

    connection.destroy()
    connection._set_status(ConnectionStatus.READY)
    connection.destroy()

    assert connection.status is ConnectionStatus.DESTROYED
    assert seen == [ConnectionStatus.DESTROYED]
