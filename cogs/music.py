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

"""Music commands for Tempo.

Every command is a hybrid command: it runs as /play and as !play (the
prefix is ``command_prefix`` in settings.yaml). Aliases only apply to the
prefix form, Discord has no slash aliases.

The cog only translates commands into MusicService calls and results into
replies. Playback state lives in core/, never here.
"""

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.errors import (
    NothingPlayingError,
    StreamResolutionError,
    TrackNotFoundError,
    TrackValidationError,
    VoiceConnectionError,
    VolumeUnsupportedError,
)
from core.service import MusicService
from core.settings import MAX_VOLUME_PERCENT
from ui.views import DEFAULT_VIEW_TIMEOUT, QueueView
from utils.formatting import format_ms, progress_bar
from utils.response import (
    ResponseMixin,
    display_title,
    EMBED_TITLE_MAX,
)

# =========================================================================================================
# COMMAND ALIASES
# =========================================================================================================
# Alternative names for the prefix form (!np = !nowplaying). Keys are the
# command names; each alias may only be used once across all commands.

COMMAND_ALIASES = {
    "play": ["p", "ytplay"],
    "skip": ["next"],
    "stop": [],
    "leave": ["disconnect"],
    "volume": ["vol"],
    "nowplaying": ["np", "current"],
    "queue": ["q"],
}


def validate_command_aliases(aliases: dict[str, list[str]]) -> None:
    """
    Check that no alias is used twice or shadows a command name.

    Raises:
        ValueError: If duplicate aliases are found
    """
    alias_to_command = {name.lower(): name for name in aliases}
    duplicates = []

    for command, names in aliases.items():
        for alias in names:
            alias_lower = alias.lower()
            if alias_lower in alias_to_command:
                duplicates.append(f"alias '{alias}' is used by both '{alias_to_command[alias_lower]}' and '{command}'")
            else:
                alias_to_command[alias_lower] = command

    if duplicates:
        raise ValueError("command alias configuration error:\n" + "\n".join(duplicates))


validate_command_aliases(COMMAND_ALIASES)


class Music(ResponseMixin, commands.Cog):
    """Music commands: play skip stop leave volume nowplaying queue."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def service(self) -> MusicService | None:
        return getattr(self.bot, "music", None)

    @property
    def display_size(self) -> int:
        return self.bot.config_manager.get("queue_display_size", 10)

    async def _require_service(self, ctx: commands.Context) -> MusicService | None:
        service = self.service
        if service is None:
            await self.respond(ctx, "music_unavailable")
        return service

    async def _require_same_vc(self, ctx: commands.Context, service: MusicService) -> bool:
        return await self._check_same_vc(ctx, service.voice_channel_id(ctx.guild.id))

    async def cog_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        """Explain argument mistakes to the user; anything else is a bug and gets logged."""
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            usage = f"{ctx.clean_prefix}{ctx.command.qualified_name} {ctx.command.signature}".strip()
            await self.respond(ctx, "command_usage", usage=usage)
            return
        if isinstance(error, commands.NoPrivateMessage):
            await self.respond(ctx, "guild_only")
            return

        logger.opt(exception=error).error(f"command error in {ctx.command}")
        try:
            await self.respond(ctx, "error_generic")
        except discord.HTTPException:
            pass  # Interaction already expired

    # =========================================================================
    # Playback
    # =========================================================================

    @commands.hybrid_command(name="play", aliases=COMMAND_ALIASES["play"],
                             description="play a song or add it to the queue")
    @commands.guild_only()
    @app_commands.describe(query="song name or URL")
    async def play(self, ctx: commands.Context, *, query: str) -> None:
        """Resolve, queue and (when idle) start a track.

        The bot joins the caller's channel when it isn't connected yet. Callers
        in another channel than the bot are refused.
        """
        service = await self._require_service(ctx)
        if service is None:
            return
        if not await self._require_same_vc(ctx, service):
            return

        voice_channel = ctx.author.voice.channel
        permissions = voice_channel.permissions_for(ctx.guild.me)
        if not permissions.connect or not permissions.speak:
            await self.respond(ctx, "need_vc_permissions")
            return

        # Resolving can take a few seconds (yt-dlp / Lavalink search)
        await ctx.defer(ephemeral=True)

        try:
            outcome = await service.handle_play_command(
                query,
                voice_channel=voice_channel,
                text_channel=ctx.channel,
                requested_by=ctx.author.display_name,
            )
        except TrackNotFoundError as e:
            await self.respond(ctx, "track_not_found", query=display_title(e.query))
            return
        except VoiceConnectionError as e:
            logger.bind(guild=ctx.guild.id).warning(f"join failed: {e}")
            await self.respond(ctx, "failed_join_vc")
            return
        except (StreamResolutionError, TrackValidationError) as e:
            await self.respond(ctx, "track_load_failed", error=display_title(str(e)))
            return

        track = outcome.track
        if outcome.started:
            await self.respond(ctx, "play_started",
                               title=display_title(track.title), duration=track.duration_formatted)
        elif outcome.position:
            await self.respond(ctx, "added_to_queue", title=display_title(track.title),
                               duration=track.duration_formatted, position=outcome.position)
        else:
            # Start failure was already announced in the channel
            await self.respond(ctx, "track_load_failed", error="playback could not start")

    @commands.hybrid_command(name="skip", aliases=COMMAND_ALIASES["skip"], description="skip the current song")
    @commands.guild_only()
    async def skip(self, ctx: commands.Context) -> None:
        service = await self._require_service(ctx)
        if service is None or not await self._require_same_vc(ctx, service):
            return

        result = await service.skip(ctx.guild.id)
        if result.skipped:
            logger.bind(guild=ctx.guild.id).info(f"skip by {ctx.author.display_name}")
            await self.respond(ctx, "skipped", title=display_title(result.title))
        else:
            await self.respond(ctx, result.reason)

    @commands.hybrid_command(name="stop", aliases=COMMAND_ALIASES["stop"],
                             description="stop playback, clear the queue and leave")
    @commands.guild_only()
    async def stop(self, ctx: commands.Context) -> None:
        service = await self._require_service(ctx)
        if service is None or not await self._require_same_vc(ctx, service):
            return

        result = await service.stop(ctx.guild.id)
        if result.stopped:
            logger.bind(guild=ctx.guild.id).info(f"stopped by {ctx.author.display_name}")
            await self.respond(ctx, "stopped")
        else:
            await self.respond(ctx, result.reason)

    @commands.hybrid_command(name="leave", aliases=COMMAND_ALIASES["leave"], description="leave the voice channel")
    @commands.guild_only()
    async def leave(self, ctx: commands.Context) -> None:
        service = await self._require_service(ctx)
        if service is None or not await self._require_same_vc(ctx, service):
            return

        result = await service.leave(ctx.guild.id)
        await self.respond(ctx, "left" if result.left else result.reason)

    @commands.hybrid_command(name="volume", aliases=COMMAND_ALIASES["volume"], description="set the playback volume")
    @commands.guild_only()
    @app_commands.describe(level=f"volume percentage (0-{MAX_VOLUME_PERCENT})")
    async def volume(self, ctx: commands.Context, level: commands.Range[int, 0, MAX_VOLUME_PERCENT]) -> None:
        service = await self._require_service(ctx)
        if service is None or not await self._require_same_vc(ctx, service):
            return

        try:
            applied = await service.set_volume(ctx.guild.id, level)
        except NothingPlayingError:
            await self.respond(ctx, "nothing_playing")
            return
        except VolumeUnsupportedError:
            await self.respond(ctx, "volume_unsupported")
            return
        await self.respond(ctx, "volume_set", level=applied)

    # =========================================================================
    # Info
    # =========================================================================

    @commands.hybrid_command(name="nowplaying", aliases=COMMAND_ALIASES["nowplaying"],
                             description="show the current song")
    @commands.guild_only()
    async def now_playing(self, ctx: commands.Context) -> None:
        service = await self._require_service(ctx)
        if service is None:
            return

        info = service.get_now_playing(ctx.guild.id)
        if info is None:
            await self.respond(ctx, "nothing_playing")
            return

        track = info.track
        total_ms = track.duration_seconds * 1000
        embed = discord.Embed(
            title=display_title(track.title, EMBED_TITLE_MAX),
            url=track.url,
            color=self.bot.config_manager.get_embed_color(),
        )
        embed.add_field(name="requested by", value=display_title(track.requested_by), inline=True)
        embed.add_field(
            name="position",
            value=f"{format_ms(info.position_ms)} / {track.duration_formatted}",
            inline=True,
        )
        embed.add_field(name="progress", value=progress_bar(info.position_ms, total_ms), inline=False)
        if track.thumbnail_url:
            embed.set_thumbnail(url=track.thumbnail_url)

        await ctx.send(embed=embed, ephemeral=True)

    @commands.hybrid_command(name="queue", aliases=COMMAND_ALIASES["queue"], description="show the current queue")
    @commands.guild_only()
    async def queue(self, ctx: commands.Context) -> None:
        """Show now playing plus upcoming tracks, paginated."""
        service = await self._require_service(ctx)
        if service is None:
            return

        snapshot = service.get_queue(ctx.guild.id)
        if snapshot.now_playing is None and not snapshot.upcoming:
            await self.respond(ctx, "nothing_queued")
            return

        view = QueueView(
            snapshot,
            page_size=self.display_size,
            color=self.bot.config_manager.get_embed_color(),
            author_id=ctx.author.id,
            timeout=self.bot.config_manager.get("ui", {}).get("extended_auto_delete", DEFAULT_VIEW_TIMEOUT),
        )
        view.message = await ctx.send(embed=view.current_embed(), view=view, ephemeral=True)  # Store for on_timeout


async def setup(bot: commands.Bot) -> None:
    """Load the Music cog."""
    await bot.add_cog(Music(bot))
