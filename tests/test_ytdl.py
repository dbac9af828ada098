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

from core.errors import StreamResolutionError, TrackNotFoundError
from systems.ytdl import YtdlTrackResolver, _first_entry, is_url, to_resolved

VIDEO = {
    "title": "Some Song",
    "webpage_url": "https://www.youtube.com/watch?v=abc",
    "url": "https://rr1.googlevideo.com/audio",
    "duration": 213,
    "thumbnail": "https://i.ytimg.com/abc.jpg",
}


class StubbedResolver(YtdlTrackResolver):
    """Resolver with extraction replaced by canned info dicts."""

    def __init__(self, results):
        super().__init__()
        self.results = results
        self.targets = []

    def _extract(self, target):
        self.targets.append(target)
        return self.results.get(target)


def test_is_url():
    assert is_url("https://youtu.be/abc")
    assert is_url("  HTTP://example.com ")
    assert not is_url("never gonna give you up")


def test_first_entry_unwraps_searches_and_playlists():
    assert _first_entry({"entries": [None, {"entries": [VIDEO]}]}) == VIDEO
    assert _first_entry({"entries": []}) is None
    assert _first_entry(VIDEO) == VIDEO


def test_to_resolved_maps_metadata():
    resolved = to_resolved(VIDEO)

    assert resolved.title == "Some Song"
    assert resolved.url == "https://www.youtube.com/watch?v=abc"
    assert resolved.duration_seconds == 213
    assert resolved.duration_formatted == "3:33"
    assert resolved.thumbnail_url == "https://i.ytimg.com/abc.jpg"


def test_to_resolved_live_stream():
    resolved = to_resolved({**VIDEO, "duration": None, "is_live": True})

    assert resolved.duration_seconds == 0
    assert resolved.duration_formatted == "LIVE"


async def test_text_query_searches_first_result():
    resolver = StubbedResolver({"ytsearch1:some song": {"entries": [VIDEO]}})

    resolved = await resolver.resolve("  some song ")

    assert resolver.targets == ["ytsearch1:some song"]
    assert resolved.title == "Some Song"


async def test_empty_search_is_not_found():
    resolver = StubbedResolver({"ytsearch1:zzz": {"entries": []}})

    with pytest.raises(TrackNotFoundError):
        await resolver.resolve("zzz")


async def test_empty_url_is_a_stream_error():
    resolver = StubbedResolver({})

    with pytest.raises(StreamResolutionError) as exc_info:
        await resolver.resolve("https://example.com/nothing")
    assert not isinstance(exc_info.value, TrackNotFoundError)


async def test_stream_url_reextracts_media_url():
    resolver = StubbedResolver({VIDEO["webpage_url"]: VIDEO})

    assert await resolver.stream_url(VIDEO["webpage_url"]) == VIDEO["url"]
