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

from utils.formatting import format_duration, format_ms, progress_bar


@pytest.mark.parametrize("seconds,expected", [
    (0, "0:00"),
    (5, "0:05"),
    (65, "1:05"),
    (600, "10:00"),
    (3725, "1:02:05"),
    (None, "0:00"),
    (-3, "0:00"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_ms_truncates_to_seconds():
    assert format_ms(65_999) == "1:05"
    assert format_ms(None) == "0:00"


def test_progress_bar_unknown_length():
    assert progress_bar(5000, 0) == "N/A"


def test_progress_bar_marker_position():
    assert progress_bar(0, 10_000, length=4) == "`[🔘▬▬▬▬]`"
    assert progress_bar(5_000, 10_000, length=4) == "`[▬▬🔘▬▬]`"
    assert progress_bar(20_000, 10_000, length=4) == "`[▬▬▬▬🔘]`"
