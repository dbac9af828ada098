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

"""Status embeds posted to a guild's text channel by the player core."""

import asyncio

import discord
from loguru import logger

from utils.response import display_title

# Track fire-and-forget send tasks to prevent GC warnings
_send_tasks: set[asyncio.Task] = set()


class Announcer:
    """
    Sends player status messages ("now playing", "queue empty", errors).

    Message text and titles come from messages.yaml, so every announcement
    can be reworded or switched off there. Sending never blocks the caller:
    announce() schedules the send and returns immediately.
    """

    def __init__(self, config_manager) -> None:
        self.config_manager = config_manager

    def build_embed(self, key: str, **kwargs) -> discord.Embed:
        thumbnail = kwargs.pop("thumbnail", None)
        for field in ("title", "requester"):
            if isinstance(kwargs.get(field), str):
                kwargs[field] = display_title(kwargs[field])

        embed = discord.Embed(
            title=self.config_manager.title(key),
            description=self.config_manager.msg(key, **kwargs),
            color=self.config_manager.get_embed_color(),
        )
        if thumbnail:
            embed.set_thumbnail(url=thumbnail)
        return embed

    def announce(self, player, key: str, **kwargs) -> None:
        """Post message ``key`` to the player's text channel, if it has one."""
        channel = player.text_channel
        if channel is None or not self.config_manager.is_enabled(key):
            return
        embed = self.build_embed(key, **kwargs)
        task = asyncio.create_task(self._send(channel, embed, player.guild_id, key))
        _send_tasks.add(task)
        task.add_done_callback(_send_tasks.discard)

    async def _send(self, channel, embed: discord.Embed, guild_id: int, key: str) -> None:
        try:
            await channel.send(embed=embed)
        except discord.Forbidden:
            logger.bind(guild=guild_id).warning(f"no permission to post {key} in #{getattr(channel, 'name', channel)}")
        except discord.HTTPException as e:
            logger.bind(guild=guild_id).error(f"failed to post {key}: {e}")
