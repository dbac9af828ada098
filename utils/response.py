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

"""Response utilities for prefix and slash commands.

Provides ResponseMixin for consistent message handling across cogs, and
the escaping/truncation helpers shared with the announcer.
"""

import asyncio

import discord
from discord.ext import commands

# Track fire-and-forget cleanup tasks to prevent GC warnings
_cleanup_tasks: set[asyncio.Task] = set()


def escape_markdown(text: str) -> str:
    """Escape underscores and asterisks for Discord embed/message display.

    Track titles are user-controlled (YouTube titles, uploader names), so
    **bold** or _italic_ markers in them would otherwise bleed into the
    surrounding message formatting.
    """
    return text.replace("\\", "\\\\").replace("_", "\\_").replace("*", "\\*")


# =============================================================================
# DISPLAY TRUNCATION
# =============================================================================
# Discord limits and safe truncation thresholds.
# Always truncate BEFORE escape_markdown (escaping can add characters).

QUEUE_TITLE_MAX = 60       # 25 items × ~80 chars/line = ~2000 (under 4096)
EMBED_FIELD_MAX = 1000     # embed field value (limit 1024) - room for "..." + escapes
EMBED_TITLE_MAX = 240      # embed title (limit 256)


def truncate_for_display(text: str, max_length: int) -> str:
    """Truncate text with ellipsis for Discord display.

    Args:
        text: Text to truncate (must not be None)
        max_length: Maximum length including "..." suffix

    Returns:
        Original text if within limit, else truncated with "..."

    Note:
        Always call BEFORE escape_markdown(). Escaping can add characters
        which would throw off length calculations.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def display_title(text: str, max_length: int = EMBED_FIELD_MAX) -> str:
    """Truncate then escape, in that order."""
    return escape_markdown(truncate_for_display(text, max_length))


class ResponseMixin:
    """Mixin providing standardized command responses for cogs.

    Commands are hybrid: the same callback runs for /play and !play. The
    Context carries an interaction only on the slash path.

    Provides respond() which handles:
    - Per-message enable/disable from messages.yaml
    - Auto-deletion after configurable timeout
    - Both response and followup paths (slash commands that defer while resolving)

    Requirements:
        self.bot must have a config_manager with:
        - msg(key, **kwargs) -> str
        - is_enabled(key) -> bool
        - get(key, default) -> value

    Usage:
        class MyCog(ResponseMixin, commands.Cog):
            async def my_command(self, ctx):
                await self.respond(ctx, "volume_set", level=50)
    """

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from config."""
        return self.bot.config_manager.msg(key, **kwargs)

    async def _delete_response(self, interaction: discord.Interaction, delay: float) -> None:
        """Delete interaction response after delay (for followup path)."""
        try:
            await asyncio.sleep(delay)
            await interaction.delete_original_response()
        except asyncio.CancelledError:
            pass  # Shutdown during wait - acceptable
        except discord.NotFound:
            pass
        except discord.HTTPException:
            pass

    async def respond(self, ctx: commands.Context, key: str, *, ephemeral: bool = True, **kwargs) -> None:
        """Send message if enabled, otherwise acknowledge silently.

        Checks messages.yaml for `enabled: true/false` on the message key.
        If disabled, a slash command is deferred and deleted to acknowledge
        it silently; a prefix command gets no reply.
        If enabled, sends message with auto-delete after ui.brief_auto_delete.

        Args:
            ctx: Command context (prefix or slash invocation)
            key: Message key from messages.yaml
            ephemeral: Only the invoking user sees the reply (slash only)
            **kwargs: Format variables for the message template

        Config:
            messages.yaml - Per-message `enabled` flag
            settings.yaml - `ui.brief_auto_delete` (default 10s, 0 to disable)
        """
        interaction = ctx.interaction
        if not self.bot.config_manager.is_enabled(key):
            if interaction is None:
                return
            # Silent acknowledgment - defer then delete
            if not interaction.response.is_done():
                await interaction.response.defer(ephemeral=True)
            try:
                await interaction.delete_original_response()
            except discord.NotFound:
                pass  # Already deleted or never created
            return

        text = self.msg(key, **kwargs)

        ui_config = self.bot.config_manager.get("ui", {})
        timeout = ui_config.get("brief_auto_delete", 10)
        delete_after = timeout if timeout > 0 else None

        if interaction is None or not interaction.response.is_done():
            # Channel reply or first interaction response - native delete_after
            await ctx.send(text, ephemeral=ephemeral, delete_after=delete_after)
        else:
            # Followup path - manual deletion via task
            await interaction.followup.send(text, ephemeral=ephemeral)
            if delete_after:
                task = asyncio.create_task(self._delete_response(interaction, delete_after))
                _cleanup_tasks.add(task)
                task.add_done_callback(_cleanup_tasks.discard)

    async def _check_same_vc(self, ctx: commands.Context, channel_id: int | None) -> bool:
        """Check user is in the bot's voice channel. Returns True if allowed, False if denied.

        Sends not_in_vc or wrong_vc message via respond() on denial.
        channel_id is the bot's current voice channel; None means the bot is
        not connected, in which case any voice channel is fine.
        """
        voice = getattr(ctx.author, "voice", None)
        if not voice or not voice.channel:
            await self.respond(ctx, "not_in_vc")
            return False
        if channel_id is not None and voice.channel.id != channel_id:
            await self.respond(ctx, "wrong_vc", channel=f"<#{channel_id}>")
            return False
        return True
