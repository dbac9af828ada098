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

from core.player import GuildPlayer, GuildPlayerRegistry
from core.playback import PlaybackState
from core.track import ResolvedTrack
from tests.fakes import FakeTextChannel


def make_registry():
    created = []

    def factory(guild_id):
        player = GuildPlayer(guild_id)
        created.append(player)
        return player

    return GuildPlayerRegistry(factory), created


def test_ensure_creates_once_per_guild():
    registry, created = make_registry()

    first = registry.ensure(1)
    again = registry.ensure(1)
    other = registry.ensure(2)

    assert first is again
    assert other is not first
    assert len(created) == 2
    assert len(registry) == 2
    assert 1 in registry and 2 in registry


def test_get_does_not_create():
    registry, created = make_registry()

    assert registry.get(1) is None
    assert created == []


def test_remove_forgets_guild():
    registry, _ = make_registry()
    player = registry.ensure(1)

    assert registry.remove(1) is player
    assert 1 not in registry
    assert registry.remove(1) is None
    assert registry.ensure(1) is not player


def test_ensure_updates_text_channel_only_when_given():
    registry, _ = make_registry()
    general, music = FakeTextChannel("general"), FakeTextChannel("music")

    player = registry.ensure(1, general)
    registry.ensure(1)
    assert player.text_channel is general

    registry.ensure(1, music)
    assert player.text_channel is music


def test_iteration_survives_removal():
    registry, _ = make_registry()
    for guild_id in (1, 2, 3):
        registry.ensure(guild_id)

    for player in registry:
        registry.remove(player.guild_id)

    assert len(registry) == 0


def test_enqueue_appends_valid_tracks():
    player = GuildPlayer(1)

    first = player.enqueue(ResolvedTrack(title="a", url="https://example.com/a", duration_seconds=61), "alice")
    second = player.enqueue(ResolvedTrack(title="b", url="https://example.com/b"), "bob")

    assert list(player.queue) == [first, second]
    assert first.duration_formatted == "1:01"
    assert second.requested_by == "bob"


def test_enqueue_rejects_incomplete_tracks_without_side_effects():
    player = GuildPlayer(1)

    assert player.enqueue(ResolvedTrack(title=None, url="https://example.com/x"), "alice") is None
    assert player.enqueue(ResolvedTrack(title="no url", url=""), "alice") is None

    assert list(player.queue) == []
    assert player.current_song is None
    assert player.state is PlaybackState.IDLE


def test_new_player_is_idle():
    player = GuildPlayer(1, volume=0.8)

    assert player.is_idle
    assert not player.is_playing
    assert not player.leave_timer_armed
    assert player.current_volume == 0.8
