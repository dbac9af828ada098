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

from types import SimpleNamespace

import pytest

from cogs.music import COMMAND_ALIASES, validate_command_aliases
from core.service import QueueSnapshot
from core.track import ResolvedTrack, Track
from ui.views import queue_page_embed
from utils.response import ResponseMixin


class StubConfig:
    def __init__(self, disabled=(), brief_auto_delete=10):
        self.disabled = set(disabled)
        self.brief_auto_delete = brief_auto_delete

    def msg(self, key, **kwargs):
        return f"{key} " + " ".join(f"{k}={v}" for k, v in sorted(kwargs.items()))

    def is_enabled(self, key):
        return key not in self.disabled

    def get(self, key, default=None):
        if key == "ui":
            return {"brief_auto_delete": self.brief_auto_delete}
        return default


class Responder(ResponseMixin):
    def __init__(self, config):
        self.bot = SimpleNamespace(config_manager=config)


class PrefixContext:
    """A !command invocation: no interaction, replies go to the channel."""

    def __init__(self, author=None):
        self.interaction = None
        self.author = author
        self.sent = []

    async def send(self, content=None, **kwargs):
        self.sent.append((content, kwargs))


def track(title: str, requested_by: str = "alice") -> Track:
    return Track.from_resolved(ResolvedTrack(title=title, url=f"https://example.com/{title}", duration_seconds=65),
                               requested_by)


# =============================================================================
# Aliases
# =============================================================================

def test_aliases_cover_original_shortcuts():
    assert "np" in COMMAND_ALIASES["nowplaying"]
    assert "current" in COMMAND_ALIASES["nowplaying"]
    assert "disconnect" in COMMAND_ALIASES["leave"]
    assert "vol" in COMMAND_ALIASES["volume"]


def test_alias_used_twice_is_rejected():
    with pytest.raises(ValueError, match="'np'"):
        validate_command_aliases({"nowplaying": ["np"], "skip": ["NP"]})


def test_alias_shadowing_a_command_is_rejected():
    with pytest.raises(ValueError, match="'queue'"):
        validate_command_aliases({"queue": [], "play": ["queue"]})


# =============================================================================
# respond()
# =============================================================================

async def test_prefix_reply_goes_to_channel_with_auto_delete():
    ctx = PrefixContext()

    await Responder(StubConfig()).respond(ctx, "volume_set", level=50)

    assert ctx.sent == [("volume_set level=50", {"ephemeral": True, "delete_after": 10})]


async def test_prefix_reply_kept_when_auto_delete_disabled():
    ctx = PrefixContext()

    await Responder(StubConfig(brief_auto_delete=0)).respond(ctx, "skipped", title="x")

    assert ctx.sent[0][1]["delete_after"] is None


async def test_disabled_message_sends_nothing_for_prefix_command():
    ctx = PrefixContext()

    await Responder(StubConfig(disabled={"skipped"})).respond(ctx, "skipped", title="x")

    assert ctx.sent == []


async def test_deferred_slash_command_replies_by_followup():
    followups = []

    async def followup_send(content, **kwargs):
        followups.append((content, kwargs))

    interaction = SimpleNamespace(
        response=SimpleNamespace(is_done=lambda: True),
        followup=SimpleNamespace(send=followup_send),
    )
    ctx = PrefixContext()
    ctx.interaction = interaction

    await Responder(StubConfig(brief_auto_delete=0)).respond(ctx, "nothing_queued")

    assert ctx.sent == []
    assert followups == [("nothing_queued ", {"ephemeral": True})]


async def test_same_vc_check_refuses_member_outside_voice():
    ctx = PrefixContext(author=SimpleNamespace(voice=None))

    allowed = await Responder(StubConfig())._check_same_vc(ctx, 100)

    assert not allowed
    assert ctx.sent[0][0] == "not_in_vc "


async def test_same_vc_check_names_bot_channel():
    ctx = PrefixContext(author=SimpleNamespace(voice=SimpleNamespace(channel=SimpleNamespace(id=200))))

    allowed = await Responder(StubConfig())._check_same_vc(ctx, 100)

    assert not allowed
    assert ctx.sent[0][0] == "wrong_vc channel=<#100>"


# =============================================================================
# Queue pages
# =============================================================================

def test_first_queue_page_shows_current_song_and_numbering():
    snapshot = QueueSnapshot(now_playing=track("playing_now"), upcoming=[track(f"song {i}") for i in range(1, 13)])

    embed = queue_page_embed(snapshot, page=0, page_size=5, color=0x123456)

    lines = embed.description.split("\n")
    assert lines[0] == "**now:** playing\\_now `1:05`"
    assert lines[2].startswith("1. song 1 `1:05`")
    assert len(lines) == 7
    assert embed.footer.text == "page 1/3 · 12 up next"


def test_later_queue_page_continues_numbering():
    snapshot = QueueSnapshot(now_playing=track("a"), upcoming=[track(f"song {i}") for i in range(1, 13)])

    embed = queue_page_embed(snapshot, page=2, page_size=5, color=0)

    assert embed.description.split("\n") == [
        "11. song 11 `1:05` · alice",
        "12. song 12 `1:05` · alice",
    ]


def test_queue_page_with_only_current_song():
    embed = queue_page_embed(QueueSnapshot(now_playing=track("solo")), page=0, page_size=10, color=0)

    assert embed.description.endswith("nothing up next")
    assert embed.footer.text == "page 1/1 · 0 up next"
