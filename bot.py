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
Tempo Music Bot
========================================================

Entry point. Loads .env and the YAML config, sets up logging, validates the
environment, then builds the audio backend and the music service in
setup_hook() once the bot's event loop is running.

Audio backends (settings.yaml audio.backend, AUDIO_BACKEND env var):
    ffmpeg   - discord.py voice + local FFmpeg, tracks found with yt-dlp
    lavalink - mafic + a Lavalink server
"""

import asyncio
import os
import signal
from pathlib import Path

import discord
import mafic
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.announcer import Announcer
from core.service import MusicService
from core.settings import PlayerSettings
from utils.config import ConfigManager, validate_configuration
from utils.log import setup_logging

EXTENSIONS = ("cogs.music",)


class MusicBot(commands.Bot):
    """commands.Bot that owns the config manager and the music service."""

    def __init__(self, config_manager: ConfigManager) -> None:
        intents = discord.Intents.default()
        intents.message_content = True  # Prefix commands (!play)
        intents.voice_states = True
        prefix = config_manager.get("command_prefix", "!")
        super().__init__(command_prefix=commands.when_mentioned_or(prefix), intents=intents)
        self.config_manager = config_manager
        self.music: MusicService | None = None
        self.pool: mafic.NodePool | None = None
        self._node_task: asyncio.Task | None = None
        self._closing = False

    async def setup_hook(self) -> None:
        gateway, resolver = await self._build_backend()
        self.music = MusicService(
            gateway=gateway,
            resolver=resolver,
            announcer=Announcer(self.config_manager),
            settings=PlayerSettings.from_config(self.config_manager),
        )

        for extension in EXTENSIONS:
            await self.load_extension(extension)

        guild_id = os.getenv("GUILD_ID")
        if guild_id:
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.info(f"synced {len(synced)} commands")

    async def _build_backend(self):
        audio = self.config_manager.get("audio", {})
        join_timeout = self.config_manager.get("playback", {}).get("join_timeout", 20)

        if audio.get("backend") == "lavalink":
            from systems.lavalink import LavalinkGateway, LavalinkTrackResolver

            lavalink = self.config_manager.get("lavalink", {})
            self.pool = mafic.NodePool(self)
            self._node_task = asyncio.create_task(self._add_node(lavalink))
            resolver = LavalinkTrackResolver(self.pool)
            logger.log("NOTICE", f"audio backend: lavalink ({lavalink['host']}:{lavalink['port']})")
            return LavalinkGateway(self, self.pool, resolver, connect_timeout=join_timeout), resolver

        from systems.ffmpeg_voice import FFmpegVoiceGateway
        from systems.ytdl import YtdlTrackResolver

        resolver = YtdlTrackResolver()
        gateway = FFmpegVoiceGateway(
            self,
            resolver,
            ffmpeg_path=audio.get("ffmpeg_path", "ffmpeg"),
            before_options=audio.get("before_options", ""),
            options=audio.get("options", "-vn"),
            inline_volume=bool(audio.get("inline_volume", True)),
            connect_timeout=join_timeout,
        )
        logger.log("NOTICE", "audio backend: ffmpeg")
        return gateway, resolver

    async def _add_node(self, lavalink: dict) -> None:
        """Connect the Lavalink node once the bot user is known."""
        await self.wait_until_ready()
        try:
            await self.pool.create_node(
                host=lavalink["host"],
                port=int(lavalink["port"]),
                label=lavalink["label"],
                password=str(lavalink["password"]),
                secure=bool(lavalink["secure"]),
            )
        except Exception:
            logger.opt(exception=True).error("failed to connect to lavalink, music commands unavailable")
            return
        logger.log("NOTICE", f"lavalink node \"{lavalink['label']}\" connected")

    async def on_ready(self) -> None:
        logger.log("NOTICE", f"logged in as {self.user} ({len(self.guilds)} guilds)")

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        # Typos of prefix commands are harmless user mistakes
        if isinstance(error, commands.CommandNotFound):
            logger.debug(f"unknown command from {ctx.author}: {ctx.message.content}")
            return
        if ctx.cog is not None and ctx.cog.has_error_handler():
            return
        logger.opt(exception=error).error(f"command error in {ctx.command}")

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        if self.music is not None:
            await self.music.stop(guild.id)

    async def close(self) -> None:
        """Tear down every guild player before closing the connection."""
        if self._closing:
            return
        self._closing = True
        logger.info("shutting down...")
        if self._node_task is not None and not self._node_task.done():
            self._node_task.cancel()
        if self.music is not None:
            try:
                await self.music.shutdown()
            except Exception:
                logger.opt(exception=True).error("error during music shutdown")
        await super().close()
        logger.info("shutdown complete")


async def main() -> None:
    load_dotenv()

    config_manager = ConfigManager(Path(os.getenv("CONFIG_PATH", "config")))
    await config_manager.load()
    setup_logging(config_manager.get("logging", {}).get("level", "verbose"))
    await validate_configuration(config_manager)

    bot = MusicBot(config_manager)

    # SIGINT = Ctrl+C, SIGTERM = docker stop / systemd stop
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(_shutdown(bot, s)))
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still reaches asyncio.run

    async with bot:
        await bot.start(os.environ["DISCORD_TOKEN"])


async def _shutdown(bot: MusicBot, sig: signal.Signals) -> None:
    logger.info(f"received {sig.name}, shutting down...")
    await bot.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
