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

import pytest

from core.service import MusicService
from core.settings import PlayerSettings
from tests.fakes import FakeGateway, FakeResolver, FakeTextChannel, RecordingAnnouncer, voice_channel

FAST_SETTINGS = dict(
    join_timeout=0.1,
    reconnect_grace=0.05,
    leave_timeout=30.0,
    stream_timeout=1.0,
    resolve_timeout=1.0,
    max_consecutive_failures=5,
    default_volume=1.0,
)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def announcer():
    return RecordingAnnouncer()


@pytest.fixture
def text_channel():
    return FakeTextChannel()


@pytest.fixture
def channel():
    return voice_channel()


@pytest.fixture
async def make_service(gateway, resolver, announcer):
    """Build a MusicService on the fakes; every service is shut down after the test."""
    services = []

    def factory(**overrides) -> MusicService:
        settings = PlayerSettings(**{**FAST_SETTINGS, **overrides})
        service = MusicService(gateway, resolver, announcer, settings)
        services.append(service)
        return service

    yield factory

    for service in services:
        await service.shutdown()


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def play(service, channel, text_channel):
    """Shortcut for a /play from guild 1 in the default channels."""
    async def _play(query: str, requested_by: str = "alice"):
        return await service.handle_play_command(query, channel, text_channel, requested_by)
    return _play
