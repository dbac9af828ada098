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
yt-dlp Track Resolver

Resolves /play queries for the FFmpeg backend:
    - URLs are extracted directly. Playlist URLs resolve to their first entry.
    - Anything else is a YouTube search, first result wins.

Stream URLs expire after a few hours, so resolve() only returns the page URL
and stream_url() re-extracts the direct media URL right before playback.

yt-dlp is blocking; every extraction runs in a worker thread.
"""

import asyncio
import re
from typing import Any

import yt_dlp
from yt_dlp.utils import DownloadError
from loguru import logger

from core.errors import StreamResolutionError, TrackNotFoundError
from core.track import ResolvedTrack
from utils.formatting import format_duration

YTDL_OPTIONS = {
    "format": "bestaudio/best",
    "noplaylist": False,
    "playlistend": 1,
    "quiet": True,
    "no_warnings": True,
    "nocheckcertificate": True,
    "ignoreerrors": False,
    "logtostderr": False,
    "default_search": "ytsearch",
    "source_address": "0.0.0.0",  # Bind to ipv4, ipv6 addresses sometimes get blocked
}

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def is_url(query: str) -> bool:
    return bool(_URL_RE.match(query.strip()))


def _first_entry(data: dict | None) -> dict | None:
    """Unwrap search results and playlists to their first playable entry."""
    while data and "entries" in data:
        entries = [entry for entry in (data.get("entries") or []) if entry]
        if not entries:
            return None
        data = entries[0]
    return data


def to_resolved(info: dict) -> ResolvedTrack:
    """Map a yt-dlp info dict onto ResolvedTrack."""
    duration = int(info.get("duration") or 0)
    is_live = bool(info.get("is_live"))
    thumbnail = info.get("thumbnail")
    if not thumbnail and info.get("thumbnails"):
        thumbnail = info["thumbnails"][-1].get("url")
    return ResolvedTrack(
        title=info.get("title"),
        url=info.get("webpage_url") or info.get("original_url") or info.get("url"),
        duration_seconds=duration,
        duration_formatted="LIVE" if is_live else (format_duration(duration) if duration else "N/A"),
        thumbnail_url=thumbnail,
    )


class YtdlTrackResolver:
    """TrackResolver backed by yt-dlp."""

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self.options = {**YTDL_OPTIONS, **(options or {})}

    def _extract(self, target: str) -> dict | None:
        with yt_dlp.YoutubeDL(self.options) as ytdl:
            return ytdl.extract_info(target, download=False)

    async def _extract_async(self, target: str) -> dict | None:
        try:
            return await asyncio.to_thread(self._extract, target)
        except DownloadError as e:
            raise StreamResolutionError(str(e).removeprefix("ERROR: ")) from e

    async def resolve(self, query: str) -> ResolvedTrack:
        """
        Look up a URL or search query.

        Raises:
            TrackNotFoundError: search returned no results
            StreamResolutionError: extraction failed
        """
        query = query.strip()
        target = query if is_url(query) else f"ytsearch1:{query}"
        info = _first_entry(await self._extract_async(target))
        if not info:
            if is_url(query):
                raise StreamResolutionError(f"nothing playable at {query}")
            raise TrackNotFoundError(query)

        resolved = to_resolved(info)
        logger.debug(f"resolved {query!r} -> {resolved.title!r}")
        return resolved

    async def stream_url(self, url: str) -> str:
        """Fetch a fresh direct media URL for a track's page URL."""
        info = _first_entry(await self._extract_async(url))
        if not info or not info.get("url"):
            raise StreamResolutionError("no audio stream found")
        return info["url"]
