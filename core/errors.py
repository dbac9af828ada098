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
Music Player Errors

Failures that only affect one track (StreamResolutionError) are handled inside
the playback loop and never reach command handlers during auto-advance.
Connection failures and command preconditions are raised to the caller.
"""


class PlayerError(Exception):
    """Base class for all music player errors."""


class VoiceConnectionError(PlayerError):
    """Joining or keeping a voice connection failed.

    The guild is left disconnected; the caller must retry explicitly.
    """


class StreamResolutionError(PlayerError):
    """A query or track could not be turned into a playable stream."""


class TrackNotFoundError(StreamResolutionError):
    """A search returned no results."""

    def __init__(self, query: str) -> None:
        super().__init__(f'No results found for "{query}"')
        self.query = query


class TrackValidationError(PlayerError):
    """Resolved track data is missing a title or URL."""


class VolumeUnsupportedError(PlayerError):
    """The active audio resource has no inline volume control."""


class NothingPlayingError(PlayerError):
    """The command needs an active track but nothing is playing."""
