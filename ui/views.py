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

"""Queue view for Tempo.

QueueView pages through a QueueSnapshot with prev/next buttons. Only the
member who ran the command can turn pages, since prefix replies are
visible to the whole channel. The message is deleted when the view times
out (ui.extended_auto_delete in settings.yaml, 0 keeps it).
"""

import discord

from core.service import QueueSnapshot
from utils.response import QUEUE_TITLE_MAX, display_title

DEFAULT_VIEW_TIMEOUT = 90


def page_count(snapshot: QueueSnapshot, page_size: int) -> int:
    return max(1, -(-len(snapshot.upcoming) // page_size))


def queue_page_embed(snapshot: QueueSnapshot, page: int, page_size: int, color: int) -> discord.Embed:
    """Render one page: the current song on page 1, then numbered upcoming tracks."""
    start = page * page_size
    items = snapshot.upcoming[start:start + page_size]

    lines = []
    current = snapshot.now_playing
    if current is not None and page == 0:
        lines.append(f"**now:** {display_title(current.title, QUEUE_TITLE_MAX)} `{current.duration_formatted}`")
        lines.append("")

    for number, track in enumerate(items, start=start + 1):
        title = display_title(track.title, QUEUE_TITLE_MAX)
        lines.append(f"{number}. {title} `{track.duration_formatted}` · {display_title(track.requested_by)}")

    if not items and page == 0:
        lines.append("nothing up next")

    embed = discord.Embed(title="queue", description="\n".join(lines), color=color)
    embed.set_footer(text=f"page {page + 1}/{page_count(snapshot, page_size)} · {len(snapshot.upcoming)} up next")
    return embed


class QueueView(discord.ui.View):
    """
    Args:
        snapshot: Queue state at the time of the command
        page_size: Tracks per page (queue_display_size)
        color: Embed accent color
        author_id: Member allowed to turn pages
        timeout: Seconds until the message is deleted, 0 or None to keep it
    """

    def __init__(self, snapshot: QueueSnapshot, *, page_size: int, color: int, author_id: int,
                 timeout: float | None = DEFAULT_VIEW_TIMEOUT) -> None:
        super().__init__(timeout=timeout or None)
        self.snapshot = snapshot
        self.page_size = max(1, page_size)
        self.color = color
        self.author_id = author_id
        self.page = 0
        self.pages = page_count(snapshot, self.page_size)
        self.message: discord.Message | None = None
        self._update_buttons()

    def _update_buttons(self) -> None:
        self.prev_button.disabled = self.page <= 0
        self.next_button.disabled = self.page >= self.pages - 1

    def current_embed(self) -> discord.Embed:
        return queue_page_embed(self.snapshot, self.page, self.page_size, self.color)

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id == self.author_id:
            return True
        await interaction.response.send_message("run the queue command yourself to browse it", ephemeral=True)
        return False

    async def _turn(self, interaction: discord.Interaction, step: int) -> None:
        self.page = min(max(self.page + step, 0), self.pages - 1)
        self._update_buttons()
        await interaction.response.edit_message(embed=self.current_embed(), view=self)

    @discord.ui.button(emoji="◀️", style=discord.ButtonStyle.secondary)
    async def prev_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, -1)

    @discord.ui.button(emoji="▶️", style=discord.ButtonStyle.secondary)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, 1)

    async def on_timeout(self) -> None:
        if self.message is None:
            return
        try:
            await self.message.delete()
        except discord.HTTPException:
            pass  # Already gone, or an ephemeral reply we can no longer reach
