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

"""Time and progress formatting for track display."""


def format_duration(seconds: int | float | None) -> str:
    """Format seconds as m:ss, or h:mm:ss for tracks an hour or longer.

    Examples:
        format_duration(65)    -> "1:05"
        format_duration(3725)  -> "1:02:05"
        format_duration(None)  -> "0:00"
    """
    total = max(0, int(seconds or 0))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_ms(ms: int | None) -> str:
    """Format a millisecond position the same way as format_duration."""
    return format_duration((ms or 0) // 1000)


def progress_bar(current_ms: int, total_ms: int, length: int = 20) -> str:
    """Build a text progress bar for the now playing embed.

    Returns "N/A" when the total length is unknown (live streams, bad metadata).
    The marker sits between the filled and empty parts.
    """
    if not total_ms or total_ms <= 0:
        return "N/A"
    progress = min(max(current_ms / total_ms, 0.0), 1.0)
    filled = round(progress * length)
    return "`[" + "▬" * filled + "🔘" + "▬" * (length - filled) + "]`"
