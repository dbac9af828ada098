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
Track Values

ResolvedTrack is what a TrackResolver hands back for a query. Track is the
validated, immutable queue entry built from it at enqueue time.
"""

from dataclasses import dataclass, field
from itertools import count
from typing import Optional

from core.errors import TrackValidationError
from utils.formatting import format_duration

_TRACK_IDS = count(1)


@dataclass(frozen=True, slots=True)
class ResolvedTrack:
    """Raw metadata returned by a resolver. Fields may be empty on bad input."""

    title: Optional[str]
    url: Optional[str]
    duration_seconds: int = 0
    duration_formatted: Optional[str] = None
    thumbnail_url: Optional[str] = None


@dataclass(frozen=True, eq=False, slots=True)
class Track:
    """
    A playable queue entry.

    Attributes:
        title: Display title
        url: Source page URL handed back to the gateway for streaming
        duration_seconds: Length in seconds (0 for live/unknown)
        duration_formatted: Human readable length ("3:45", "N/A")
        thumbnail_url: Optional artwork
        requested_by: Tag of the member who queued it
        track_id: Unique identity

    Design notes:
        - Equality is based on track_id, so the same song queued twice
          produces two distinct entries
        - Instances are frozen; the player never mutates a queued track
    """

    title: str
    url: str
    duration_seconds: int = 0
    duration_formatted: str = "N/A"
    thumbnail_url: Optional[str] = None
    requested_by: str = ""
    track_id: int = field(default_factory=lambda: next(_TRACK_IDS))

    @classmethod
    def from_resolved(cls, resolved: ResolvedTrack, requested_by: str) -> "Track":
        """
        Validate resolver output and build a Track.

        Raises:
            TrackValidationError: title or url missing
        """
        if resolved is None or not resolved.url or not resolved.title:
            raise TrackValidationError("Resolved track is missing a title or URL")

        duration = max(0, int(resolved.duration_seconds or 0))
        if resolved.duration_formatted:
            formatted = resolved.duration_formatted
        else:
            formatted = format_duration(duration) if duration else "N/A"

        return cls(
            title=resolved.title,
            url=resolved.url,
            duration_seconds=duration,
            duration_formatted=formatted,
            thumbnail_url=resolved.thumbnail_url or None,
            requested_by=requested_by,
        )

    def __eq__(self, other) -> bool:
        return isinstance(other, Track) and self.track_id == other.track_id

    def __hash__(self) -> int:
        return hash(self.track_id)

    def __repr__(self) -> str:
        return f"Track(id={self.track_id}, title={self.title!r})"
