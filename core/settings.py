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

"""Timing and limit settings consumed by the player core."""

from dataclasses import dataclass

MAX_VOLUME_PERCENT = 200


@dataclass(frozen=True, slots=True)
class PlayerSettings:
    """
    Snapshot of the ``playback`` section of settings.yaml.

    Attributes:
        join_timeout: Seconds to wait for a voice connection to become ready
        reconnect_grace: Seconds a dropped connection gets to start recovering
        leave_timeout: Seconds idle with an empty queue before leaving (0 = never)
        stream_timeout: Seconds allowed to open a track's stream (0 = unbounded)
        resolve_timeout: Seconds allowed to resolve a /play query (0 = unbounded)
        max_consecutive_failures: Broken tracks in a row before the queue is dropped
        default_volume: Gain applied to a new guild's first track (0.0-2.0)
    """

    join_timeout: float = 20.0
    reconnect_grace: float = 5.0
    leave_timeout: float = 300.0
    stream_timeout: float = 30.0
    resolve_timeout: float = 30.0
    max_consecutive_failures: int = 5
    default_volume: float = 1.0

    @classmethod
    def from_config(cls, config_manager) -> "PlayerSettings":
        """Build settings from a loaded ConfigManager (values already validated)."""
        playback = config_manager.get("playback", {}) or {}
        defaults = cls()
        volume_percent = playback.get("default_volume", int(defaults.default_volume * 100))
        return cls(
            join_timeout=float(playback.get("join_timeout", defaults.join_timeout)),
            reconnect_grace=float(playback.get("reconnect_grace", defaults.reconnect_grace)),
            leave_timeout=float(playback.get("leave_timeout", defaults.leave_timeout)),
            stream_timeout=float(playback.get("stream_timeout", defaults.stream_timeout)),
            resolve_timeout=float(playback.get("resolve_timeout", defaults.resolve_timeout)),
            max_consecutive_failures=max(1, int(playback.get(
                "max_consecutive_failures", defaults.max_consecutive_failures
            ))),
            default_volume=max(0, min(MAX_VOLUME_PERCENT, int(volume_percent))) / 100,
        )
