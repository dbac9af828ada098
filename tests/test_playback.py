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

from core.playback import PlaybackSession, PlaybackState, handle_sink_error, handle_sink_status
from core.voice import SinkStatus
from tests.fakes import FakeResource, settle

GUILD = 1


async def test_paused_then_playing_resumes_without_new_announcement(service, play, gateway, announcer):
    await play("track a")
    sink = gateway.sinks[0]
    player = service.registry.get(GUILD)

    sink.pause()
    assert player.state is PlaybackState.PAUSED
    sink.resume()

    assert player.state is PlaybackState.PLAYING
    assert announcer.keys().count("now_playing") == 1


async def test_signal_for_other_session_is_ignored(service, play, gateway, announcer):
    await play("track a")
    await play("track b")
    player = service.registry.get(GUILD)
    stale = FakeResource(player.current_song, PlaybackSession(), None)

    handle_sink_status(service, player, SinkStatus.IDLE, stale)
    await settle()

    assert player.current_song.title == "track a"
    assert len(player.queue) == 1


async def test_signal_for_cancelled_session_is_ignored(service, play, gateway):
    await play("track a")
    await play("track b")
    player = service.registry.get(GUILD)
    resource = gateway.resources[0]

    player.cancel_active_session()
    handle_sink_status(service, player, SinkStatus.IDLE, resource)
    await settle()

    assert [t.title for t in player.queue] == ["track b"]
    assert player.advance_task is None


async def test_idle_without_resource_is_ignored(service, play):
    await play("track a")
    player = service.registry.get(GUILD)

    handle_sink_status(service, player, SinkStatus.IDLE, None)

    assert player.current_song.title == "track a"


async def test_error_from_stale_resource_is_ignored(service, play, announcer):
    await play("track a")
    player = service.registry.get(GUILD)
    stale = FakeResource(player.current_song, PlaybackSession(), None)

    handle_sink_error(service, player, RuntimeError("old stream"), stale)

    assert player.state is PlaybackState.PLAYING
    assert "player_error" not in announcer.keys()


async def test_each_play_attempt_gets_a_new_session(service, play, gateway):
    await play("track a")
    await play("track b")

    await service.skip(1)
    await settle()

    first, second = gateway.resources
    assert first.session is not second.session
    assert first.session.cancelled
    assert not second.session.cancelled
    assert second.session.track_id == second.track.track_id


async def test_not_connected_keeps_queue(service, play, gateway, announcer):
    await play("track a")
    await play("track b")
    player = service.registry.get(GUILD)
    sink = gateway.sinks[0]

    # Connection vanished without a destroyed signal reaching the player
    player.connection = None
    sink.finish()
    await settle()

    assert [t.title for t in player.queue] == ["track b"]
    assert player.current_song is None
    assert announcer.keys()[-1] == "not_connected"
