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
FFmpeg Voice Backend

VoiceGateway built on discord.py's native voice client. Audio is streamed
from the URL yt-dlp hands back and decoded by a local FFmpeg process.

Threading:
    VoiceClient.play()'s ``after`` callback runs in discord.py's audio player
    thread. It is marshalled onto the event loop with call_soon_threadsafe()
    before any sink callback or state change.
"""

import asyncio

import discord

from core.errors import StreamResolutionError
from core.voice import SinkErrorCallback, SinkStatus, SinkStatusCallback
from systems.discord_voice import DiscordGatewayBase
from systems.ytdl import YtdlTrackResolver

# discord.py sends 20ms of audio per read()
FRAME_LENGTH_MS = 20


class CountingSource(discord.AudioSource):
    """Pass-through source that counts frames to report a playback position."""

    def __init__(self, inner: discord.AudioSource) -> None:
        self.inner = inner
        self.frames = 0

    def read(self) -> bytes:
        data = self.inner.read()
        if data:
            self.frames += 1
        return data

    def is_opus(self) -> bool:
        return self.inner.is_opus()

    def cleanup(self) -> None:
        self.inner.cleanup()


class TransformerVolume:
    """VolumeControl over a PCMVolumeTransformer."""

    def __init__(self, transformer: discord.PCMVolumeTransformer) -> None:
        self._transformer = transformer

    @property
    def volume(self) -> float:
        return self._transformer.volume

    async def set_volume(self, value: float) -> None:
        self._transformer.volume = value


class FFmpegResource:
    """AudioResource wrapping an FFmpeg-backed discord.py source."""

    def __init__(self, track, session, source: CountingSource, volume_control: TransformerVolume | None) -> None:
        self.track = track
        self.session = session
        self.source = source
        self.volume_control = volume_control

    @property
    def position_ms(self) -> int:
        return self.source.frames * FRAME_LENGTH_MS


class DiscordAudioSink:
    """AudioSink that plays resources through the subscribed VoiceClient."""

    def __init__(self, on_status: SinkStatusCallback, on_error: SinkErrorCallback) -> None:
        self._on_status = on_status
        self._on_error = on_error
        self._status = SinkStatus.IDLE
        self._resource: FFmpegResource | None = None
        self.voice_client: discord.VoiceClient | None = None

    @property
    def status(self) -> SinkStatus:
        return self._status

    @property
    def resource(self) -> FFmpegResource | None:
        return self._resource

    def attach(self, voice_client: discord.VoiceClient) -> None:
        self.voice_client = voice_client

    async def play(self, resource: FFmpegResource) -> None:
        vc = self.voice_client
        if vc is None or not vc.is_connected():
            resource.source.cleanup()
            raise StreamResolutionError("not connected to voice")

        if vc.is_playing() or vc.is_paused():
            vc.stop()

        loop = asyncio.get_running_loop()

        def after_track(error: Exception | None) -> None:
            """Runs in the audio thread. Do not touch sink state here."""
            loop.call_soon_threadsafe(self._finished, resource, error)

        self._resource = resource
        self._status = SinkStatus.BUFFERING
        try:
            vc.play(resource.source, after=after_track)
        except discord.DiscordException as e:
            # ClientException, or OpusNotLoaded for a PCM source
            self._release(resource)
            raise StreamResolutionError(str(e)) from e
        except Exception:
            self._release(resource)
            raise

        self._status = SinkStatus.PLAYING
        self._on_status(SinkStatus.PLAYING, resource)

    def _release(self, resource: FFmpegResource) -> None:
        """Undo a play() that never got going."""
        self._resource = None
        self._status = SinkStatus.IDLE
        resource.source.cleanup()

    def _finished(self, resource: FFmpegResource, error: Exception | None) -> None:
        if error is not None:
            self._on_error(error, resource)
        if self._resource is resource:
            self._resource = None
            self._status = SinkStatus.IDLE
        self._on_status(SinkStatus.IDLE, resource)

    async def stop(self, force: bool = False) -> bool:
        """Stop the current resource. The idle signal follows from the audio thread."""
        resource = self._resource
        if resource is None:
            return False
        if self.voice_client is not None:
            self.voice_client.stop()
        if force:
            self._resource = None
            self._status = SinkStatus.IDLE
        return True


class FFmpegVoiceGateway(DiscordGatewayBase):
    """
    VoiceGateway for discord.py native voice.

    Args:
        bot: The bot, used to listen for the bot's own voice state updates
        resolver: yt-dlp resolver used to fetch fresh stream URLs
        ffmpeg_path: FFmpeg executable
        before_options: FFmpeg input options
        options: FFmpeg output options
        inline_volume: Decode to PCM with a volume transformer; False sends
            opus without volume control
        connect_timeout: Passed to VoiceChannel.connect()
    """

    client_cls = discord.VoiceClient

    def __init__(
        self,
        bot: discord.Client,
        resolver: YtdlTrackResolver,
        *,
        ffmpeg_path: str = "ffmpeg",
        before_options: str = "",
        options: str = "-vn",
        inline_volume: bool = True,
        connect_timeout: float = 20.0,
    ) -> None:
        super().__init__(bot, connect_timeout)
        self.resolver = resolver
        self.ffmpeg_path = ffmpeg_path
        self.before_options = before_options
        self.options = options
        self.inline_volume = inline_volume

    def create_sink(self, on_status: SinkStatusCallback, on_error: SinkErrorCallback) -> DiscordAudioSink:
        return DiscordAudioSink(on_status, on_error)

    async def create_resource(self, guild_id: int, track, session, volume: float) -> FFmpegResource:
        stream = await self.resolver.stream_url(track.url)
        try:
            if self.inline_volume:
                pcm = discord.FFmpegPCMAudio(
                    stream,
                    executable=self.ffmpeg_path,
                    before_options=self.before_options,
                    options=self.options,
                )
                transformer = discord.PCMVolumeTransformer(pcm, volume=volume)
                return FFmpegResource(track, session, CountingSource(transformer), TransformerVolume(transformer))

            opus = discord.FFmpegOpusAudio(
                stream,
                executable=self.ffmpeg_path,
                before_options=self.before_options,
                options=self.options,
            )
            return FFmpegResource(track, session, CountingSource(opus), None)
        except discord.ClientException as e:
            raise StreamResolutionError(f"ffmpeg failed to start: {e}") from e
