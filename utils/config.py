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

"""Configuration management for Tempo."""

import asyncio
import copy
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# General:
#   command_prefix         - Prefix for text commands (e.g. !play), @mentions always work
#   queue_display_size     - Tracks shown per page in /queue command (1-50)
#   embed_color            - Accent color for announcements as hex integer
#
# Playback Settings (playback.*):
#   join_timeout           - Seconds to wait for a voice connection to be ready (1-120)
#   reconnect_grace        - Seconds a dropped connection gets to recover (1-60)
#   leave_timeout          - Seconds idle with an empty queue before leaving (0 = never)
#   stream_timeout         - Seconds allowed to open a track's stream (0 = unbounded)
#   resolve_timeout        - Seconds allowed to look up a /play query (0 = unbounded)
#   max_consecutive_failures - Broken tracks in a row before the queue is dropped (1-50)
#   default_volume         - Volume for a guild's first track (0-200)
#
# Audio Settings (audio.*):
#   backend                - "ffmpeg" (local FFmpeg + yt-dlp) or "lavalink"
#   ffmpeg_path            - FFmpeg executable (name on PATH or full path)
#   inline_volume          - Decode to PCM so /volume works (false = opus passthrough)
#   before_options         - FFmpeg input options (reconnect flags for HTTP streams)
#   options                - FFmpeg output options
#
# Lavalink Settings (lavalink.*):
#   host, port, password   - Lavalink server address and credentials
#   secure                 - Use https/wss
#   label                  - Node name shown in logs
#
# UI Settings (ui.*):
#   extended_auto_delete   - Seconds before auto-deleting pagination views (0 = never)
#   brief_auto_delete      - Seconds before auto-deleting simple responses (0 = never)
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "command_prefix": "!",
    "queue_display_size": 10,
    "embed_color": 0x5865F2,
    "playback": {
        "join_timeout": 20,
        "reconnect_grace": 5,
        "leave_timeout": 300,
        "stream_timeout": 30,
        "resolve_timeout": 30,
        "max_consecutive_failures": 5,
        "default_volume": 100,
    },
    "audio": {
        "backend": "ffmpeg",
        "ffmpeg_path": "ffmpeg",
        "inline_volume": True,
        "before_options": "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5",
        "options": "-vn",
    },
    "lavalink": {
        "host": "127.0.0.1",
        "port": 2333,
        "password": "youshallnotpass",
        "secure": False,
        "label": "main",
    },
    # UI behavior
    "ui": {
        "extended_auto_delete": 90,  # seconds, 0 to disable
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

AUDIO_BACKENDS = ("ffmpeg", "lavalink")

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Bot responses with per-message enable/disable control.
# Each message has up to three fields:
#   title   - Embed title (channel announcements only)
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether to show this message (True) or acknowledge silently (False)
#
# Categories:
#   Announcements (posted to the text channel by the player),
#   Voice errors, Playback, Queue, Volume, Errors
#
# The respond() helper in ResponseMixin checks the enabled flag before sending.
# Disabled messages still acknowledge the interaction (defer + delete) to prevent
# Discord showing "interaction failed" - they just don't show text to the user.
# =============================================================================

DEFAULT_MESSAGES = {
    # Announcements
    "now_playing": {
        "title": "Now Playing",
        "text": "🎵 Playing: **{title}**\nDuration: {duration}\nRequested by: {requester}",
        "enabled": True,
    },
    "queue_empty": {"title": "Queue Empty", "text": "The music queue is now empty.", "enabled": True},
    "leaving_idle": {"title": "Leaving Channel", "text": "Leaving voice channel due to inactivity.", "enabled": True},
    "stream_failed": {"title": "Error", "text": "Could not play **{title}**: {error}", "enabled": True},
    "player_error": {"title": "Error", "text": "An audio player error occurred while playing **{title}**: {error}", "enabled": True},
    "not_connected": {"title": "Error", "text": "I am not connected to a voice channel.", "enabled": True},
    "too_many_failures": {
        "title": "Error",
        "text": "{failures} tracks in a row could not be played, cleared {dropped} more from the queue.",
        "enabled": True,
    },

    # Voice errors
    "not_in_vc": {"text": "You need to be in a voice channel to use this command.", "enabled": True},
    "wrong_vc": {"text": "You must be in the same voice channel as me ({channel}).", "enabled": True},
    "failed_join_vc": {"text": "I couldn't join your voice channel, try again.", "enabled": True},
    "need_vc_permissions": {"text": "I need permission to connect and speak in that channel.", "enabled": True},

    # Playback
    "play_started": {"text": "▶️ Playing **{title}** ({duration})", "enabled": True},
    "added_to_queue": {"text": "Added to Queue: **{title}** ({duration}), position {position}", "enabled": True},
    "track_not_found": {"text": "No results found for \"{query}\"", "enabled": True},
    "track_load_failed": {"text": "Couldn't load that track: {error}", "enabled": True},
    "skipped": {"text": "⏭️ Skipped **{title}**", "enabled": True},
    "nothing_to_skip": {"text": "There is no song currently playing to skip.", "enabled": True},
    "stopped": {"text": "⏹️ Music playback has been stopped and I have left the voice channel.", "enabled": True},
    "left": {"text": "👋 Disconnected from the voice channel and cleared the queue.", "enabled": True},
    "nothing_playing": {"text": "Nothing is currently playing in this server.", "enabled": True},

    # Queue
    "nothing_queued": {"text": "The music queue is empty!", "enabled": True},

    # Volume
    "volume_set": {"text": "🔊 Volume set to **{level}%**", "enabled": True},
    "volume_unsupported": {"text": "Volume can't be changed for this stream.", "enabled": True},

    # Errors
    "command_usage": {"text": "Usage: `{usage}`", "enabled": True},
    "guild_only": {"text": "Music commands only work in a server.", "enabled": True},
    "error_generic": {"text": "Something went wrong, try again.", "enabled": True},
    "music_unavailable": {"text": "The music player is not available right now.", "enabled": True},
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.

    Args:
        user: User-provided config from YAML file
        defaults: Default values to use for missing keys

    Returns:
        Merged config dict with all default keys present
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file with defaults. Missing or invalid files yield the defaults."""
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically with optional header comment.

    Writes to a temp file in the same directory and renames it over the
    destination, so a crash mid-write never leaves a truncated file.
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        with os.fdopen(temp_fd, 'w', encoding='utf-8') as f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _parse_hex(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip().lstrip("#").removeprefix("0x").removeprefix("0X")
    return int(text, 16)


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Access patterns:
        config_manager.get("key")           # Get setting value
        config_manager.get("key", default)  # Get with fallback
        config_manager.msg("key", **vars)   # Get formatted message
        config_manager.title("key")         # Get announcement embed title
        config_manager.is_enabled("key")    # Check if message should show

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = copy.deepcopy(DEFAULT_SETTINGS)
        self.messages: dict = copy.deepcopy(DEFAULT_MESSAGES)

    async def load(self) -> None:
        """Load settings and messages from YAML, apply env overrides, validate.

        Generates missing config files with default values and header comments.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        if not settings_path.exists():
            header = "# Tempo Bot Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(load_yaml, messages_path, DEFAULT_MESSAGES)

        if not messages_path.exists():
            header = "# Tempo's Responses\n# Reword or disable any message here\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _clamp(self, section: dict, defaults: dict, key: str, min_val: int, max_val: int | None,
               label: str) -> None:
        """Clamp section[key] to range, falling back to the default when not a number."""
        value = section.get(key)
        try:
            v = int(value)
        except (ValueError, TypeError):
            logger.warning(f"{label}={value!r} invalid, using default")
            section[key] = defaults[key]
            return

        clamped = max(min_val, v) if max_val is None else max(min_val, min(max_val, v))
        if clamped != v:
            range_str = f"{min_val}+" if max_val is None else f"{min_val}-{max_val}"
            logger.warning(f"{label}={v} out of range, clamped to {clamped} (valid: {range_str})")
        section[key] = clamped

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        Validation steps:
        1. Null-restore: YAML "key:" with no value becomes None. Restores defaults
           for null top-level keys and null nested keys in every section.
        2. Bounded integers: clamps display size and playback timings.
        3. Embed color: coerces string hex ("5865F2", "0x5865F2", "#5865F2") to int.
        4. Audio backend: must be one of AUDIO_BACKENDS.

        Logs warnings for any values that needed correction.
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])
        for section in ("playback", "audio", "lavalink", "ui", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS[section]
            if not isinstance(sect, dict):
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = copy.deepcopy(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        self._clamp(self.settings, DEFAULT_SETTINGS, "queue_display_size", 1, 50, "queue_display_size")

        prefix = self.settings.get("command_prefix")
        if not isinstance(prefix, str) or not prefix.strip():
            logger.warning(f"command_prefix={prefix!r} invalid, using \"{DEFAULT_SETTINGS['command_prefix']}\"")
            self.settings["command_prefix"] = DEFAULT_SETTINGS["command_prefix"]
        else:
            self.settings["command_prefix"] = prefix.strip()

        playback = self.settings["playback"]
        playback_ranges = {
            "join_timeout": (1, 120),
            "reconnect_grace": (1, 60),
            "leave_timeout": (0, None),
            "stream_timeout": (0, None),
            "resolve_timeout": (0, None),
            "max_consecutive_failures": (1, 50),
            "default_volume": (0, 200),
        }
        for key, (min_val, max_val) in playback_ranges.items():
            self._clamp(playback, DEFAULT_SETTINGS["playback"], key, min_val, max_val, f"playback.{key}")

        self._clamp(self.settings["lavalink"], DEFAULT_SETTINGS["lavalink"], "port", 1, 65535, "lavalink.port")
        for key in ("extended_auto_delete", "brief_auto_delete"):
            self._clamp(self.settings["ui"], DEFAULT_SETTINGS["ui"], key, 0, None, f"ui.{key}")

        color = self.settings.get("embed_color")
        try:
            self.settings["embed_color"] = _parse_hex(color)
        except (ValueError, TypeError):
            logger.warning(f"embed_color={color!r} invalid, using default")
            self.settings["embed_color"] = DEFAULT_SETTINGS["embed_color"]

        audio = self.settings["audio"]
        backend = str(audio.get("backend", "")).lower()
        if backend not in AUDIO_BACKENDS:
            logger.warning(f"audio.backend={audio.get('backend')!r} unknown, using ffmpeg (valid: {', '.join(AUDIO_BACKENDS)})")
            backend = "ffmpeg"
        audio["backend"] = backend

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter):
        - setting_key: Dot notation for nested keys (e.g., "playback.leave_timeout")
        - converter: Function to transform string value (int, str, bool lambda, etc.)

        Invalid env var values are logged as warnings and ignored (setting unchanged).
        """
        def non_negative(env_key: str) -> Callable[[str], int]:
            def validate(x: str) -> int:
                v = int(x)
                if v < 0:
                    logger.warning(f"{env_key}={v} out of range, clamped to 0 (valid: 0+)")
                    return 0
                return v
            return validate

        def flag(x: str) -> bool:
            return x.lower() == "true"

        env_map = {
            "COMMAND_PREFIX": ("command_prefix", str),
            "QUEUE_DISPLAY_SIZE": ("queue_display_size", int),
            "EMBED_COLOR": ("embed_color", _parse_hex),
            "LOG_LEVEL": ("logging.level", str),
            # Playback
            "JOIN_TIMEOUT": ("playback.join_timeout", int),
            "RECONNECT_GRACE": ("playback.reconnect_grace", int),
            "LEAVE_TIMEOUT": ("playback.leave_timeout", non_negative("LEAVE_TIMEOUT")),
            "STREAM_TIMEOUT": ("playback.stream_timeout", non_negative("STREAM_TIMEOUT")),
            "RESOLVE_TIMEOUT": ("playback.resolve_timeout", non_negative("RESOLVE_TIMEOUT")),
            "MAX_CONSECUTIVE_FAILURES": ("playback.max_consecutive_failures", int),
            "DEFAULT_VOLUME": ("playback.default_volume", int),
            # Audio
            "AUDIO_BACKEND": ("audio.backend", str),
            "FFMPEG_PATH": ("audio.ffmpeg_path", str),
            "INLINE_VOLUME": ("audio.inline_volume", flag),
            # Lavalink
            "LAVALINK_HOST": ("lavalink.host", str),
            "LAVALINK_PORT": ("lavalink.port", int),
            "LAVALINK_PASSWORD": ("lavalink.password", str),
            "LAVALINK_SECURE": ("lavalink.secure", flag),
            # UI timeouts
            "EXTENDED_AUTO_DELETE": ("ui.extended_auto_delete", non_negative("EXTENDED_AUTO_DELETE")),
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", non_negative("BRIEF_AUTO_DELETE")),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                # Corrupted YAML: expected dict but got scalar
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a top-level setting value (e.g., "embed_color", "playback")."""
        return self.settings.get(key, default)

    def _entry(self, key: str) -> Any:
        return self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        Returns the key itself if the message is not defined, and the raw
        template if it references a variable that was not supplied.
        """
        entry = self._entry(key)
        template = entry.get("text", key) if isinstance(entry, dict) else str(entry)
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def title(self, key: str) -> str | None:
        """Embed title for an announcement, None if the message has none."""
        entry = self._entry(key)
        return entry.get("title") if isinstance(entry, dict) else None

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be shown to the user.

        When False, respond() acknowledges the interaction silently and
        announcements are skipped.
        """
        entry = self._entry(key)
        return entry.get("enabled", True) if isinstance(entry, dict) else True

    def get_embed_color(self) -> int:
        return self.get("embed_color", DEFAULT_SETTINGS["embed_color"])


async def validate_configuration(config_manager: ConfigManager) -> None:
    """Validate configuration before bot starts, exit on failure.

    Called in main() after the config is loaded and before bot.start().

    Checks performed:
    - DISCORD_TOKEN is set and has valid format (3 dot-separated sections)
    - Config directory exists (creates if missing)
    - FFmpeg backend: the FFmpeg executable can be found
    - Lavalink backend: the server is reachable and responding

    Also warns (non-fatal) if GUILD_ID is not set.

    On failure: Logs all errors and calls sys.exit(1).
    """
    import aiohttp

    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the container environment")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3:
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Token should have three dot-separated sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )
        elif any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN has empty sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    if not os.getenv("GUILD_ID"):
        logger.warning("GUILD_ID not set - commands may take up to 1 hour to show up")

    config_path = config_manager.config_path
    if not config_path.exists():
        try:
            config_path.mkdir(parents=True)
            logger.warning(f"created missing config directory: {config_path}")
        except OSError as e:
            errors.append(f"cannot create config directory {config_path}: {e}")

    audio = config_manager.get("audio", {})
    if audio.get("backend") == "lavalink":
        lavalink = config_manager.get("lavalink", {})
        scheme = "https" if lavalink.get("secure") else "http"
        url = f"{scheme}://{lavalink.get('host')}:{lavalink.get('port')}/version"
        try:
            async with aiohttp.ClientSession() as session:
                headers = {"Authorization": str(lavalink.get("password", ""))}
                timeout = aiohttp.ClientTimeout(total=30)
                async with session.get(url, headers=headers, timeout=timeout) as resp:
                    if resp.status != 200:
                        errors.append(f"lavalink not responding at {url} (HTTP {resp.status})")
                    else:
                        version = await resp.text()
                        logger.log("NOTICE", f"lavalink version: {version}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            errors.append(f"cannot connect to lavalink at {url}: {e}")
    else:
        ffmpeg = audio.get("ffmpeg_path", "ffmpeg")
        if not shutil.which(ffmpeg):
            errors.append(f"ffmpeg not found ({ffmpeg}) - install it or set FFMPEG_PATH")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
