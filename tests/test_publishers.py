# tests/test_publishers.py

from __future__ import annotations

import base64
import io
import json

import httpx
import pytest

from hn_digest.core.ports import PublishContent
from hn_digest.publishers.github import GitHubPublisher, GitHubPublishError
from hn_digest.publishers.telegram import TelegramPublisher, TelegramPublishError, format_messages, rank_marker
from hn_digest.publishers.terminal import TerminalPublisher

from .fakes import make_entry as entry

DAY = "2025-01-10"


def _content(n: int = 2) -> PublishContent:
    return PublishContent(
        markdown="# digest\n",
        date_str=DAY,
        entries=[entry(i) for i in range(1, n + 1)],
    )


class FakeGitHub:
    """Minimal contents API: one repository, files keyed by path."""

    def __init__(self, files: dict[str, tuple[str, str]] | None = None) -> None:
        self.files = dict(files or {})  # path -> (sha, text)
        self.puts: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        prefix = "/repos/owner/blog/contents/"
        assert request.url.path.startswith(prefix)
        assert request.headers["Authorization"] == "Bearer tkn"
        path = request.url.path[len(prefix):]

        if request.method == "GET":
            if path not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"sha": self.files[path][0]})

        body = json.loads(request.content)
        self.puts.append({"path": path, **body})
        if path in self.files and body.get("sha") != self.files[path][0]:
            return httpx.Response(409, json={"message": "sha mismatch"})
        text = base64.b64decode(body["content"]).decode("utf-8")
        self.files[path] = (f"sha-{len(self.puts)}", text)
        return httpx.Response(201, json={"content": {"sha": self.files[path][0]}})


@pytest.mark.asyncio
async def test_github_creates_then_overwrites_same_path() -> None:
    api = FakeGitHub()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as http:
        pub = GitHubPublisher("tkn", "owner/blog", http=http)

        await pub.publish(_content())
        await pub.publish(PublishContent(markdown="# v2\n", date_str=DAY))

    assert list(api.files) == ["_posts/2025-01-10-daily.md"]
    assert api.files["_posts/2025-01-10-daily.md"][1] == "# v2\n"

    first, second = api.puts
    assert "sha" not in first
    assert first["message"] == "Add HackerNews daily export for 2025-01-10"
    assert first["branch"] == "main"
    assert second["sha"] == "sha-1"
    assert second["message"] == "Update HackerNews daily export for 2025-01-10"


@pytest.mark.asyncio
async def test_github_requires_credentials_and_surfaces_api_errors() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))) as http:
        with pytest.raises(GitHubPublishError):
            await GitHubPublisher(None, "owner/blog", http=http).publish(_content())
        with pytest.raises(GitHubPublishError):
            await GitHubPublisher("tkn", None, http=http).publish(_content())
        with pytest.raises(GitHubPublishError, match="500"):
            await GitHubPublisher("tkn", "owner/blog", http=http).publish(_content())


def test_telegram_messages_layout() -> None:
    messages = format_messages([entry(2), entry(1, title_zh="A & <B>", comment_summary="热议")], DAY)

    assert len(messages) == 4
    assert "今日精选 2 篇文章" in messages[0]
    assert messages[1].startswith("1️⃣ <b>A &amp; &lt;B&gt;</b>")
    assert "💬 <b>评论要点</b>: 热议" in messages[1]
    assert messages[2].startswith("2️⃣ ")
    assert "评论要点" not in messages[2]
    assert "已全部推送完毕" in messages[3]

    assert format_messages([], DAY) == [f"📰 <b>HackerNews 日报</b> | {DAY}\n\n今日暂无更新内容。"]
    assert rank_marker(11) == "11."


@pytest.mark.asyncio
async def test_telegram_tolerates_partial_failures() -> None:
    sent: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/botBOT/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == "@channel"
        assert body["parse_mode"] == "HTML"
        if body["text"].startswith("2️⃣"):
            return httpx.Response(400, json={"ok": False, "error_code": 400, "description": "Bad Request"})
        sent.append(body["text"])
        return httpx.Response(200, json={"ok": True, "result": {}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        pub = TelegramPublisher("BOT", "@channel", http=http, message_delay_seconds=0)
        await pub.publish(_content(2))

    assert len(sent) == 3


@pytest.mark.asyncio
async def test_telegram_fails_when_nothing_was_sent() -> None:
    handler = lambda r: httpx.Response(502, text="bad gateway")  # noqa: E731
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        pub = TelegramPublisher("BOT", "@channel", http=http, message_delay_seconds=0)
        with pytest.raises(TelegramPublishError, match="all 4 messages failed"):
            await pub.publish(_content(2))


@pytest.mark.asyncio
async def test_terminal_prints_between_delimiters() -> None:
    buf = io.StringIO()
    await TerminalPublisher(buf).publish(_content(3))

    out = buf.getvalue()
    assert "HackerNews Daily - 2025-01-10" in out
    assert "# digest" in out
    assert "Export completed: 3 stories" in out
