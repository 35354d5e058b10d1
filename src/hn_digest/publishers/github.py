# src/hn_digest/publishers/github.py

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from ..core.ports import PublishContent
from ..render.markdown import post_filename

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubPublishError(RuntimeError):
    pass


class GitHubPublisher:
    """
    Writes the day's post to a repository through the contents API.

    The file at <posts_dir>/<YYYY-MM-DD>-daily.md is created, or overwritten
    in place when it already exists (its sha is sent along), so publishing
    the same day twice leaves one file with the latest content.
    """

    name = "github"

    def __init__(
            self,
            token: str | None,
            repo: str | None,
            *,
            branch: str = "main",
            posts_dir: str = "_posts",
            http: httpx.AsyncClient | None = None,
            api_url: str = GITHUB_API_URL,
            timeout_seconds: float = 30.0,
    ) -> None:
        self.token = token
        self.repo = repo
        self.branch = branch
        self.posts_dir = posts_dir.strip("/")
        self._own_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.api_url = api_url.rstrip("/")

    async def aclose(self) -> None:
        if self._own_http:
            await self.http.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "hn-digest",
        }

    def _contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repo}/contents/{path}"

    async def get_file_sha(self, path: str) -> str | None:
        resp = await self.http.get(self._contents_url(path), params={"ref": self.branch}, headers=self._headers())
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise GitHubPublishError(f"GitHub GET {path} failed: {resp.status_code} {resp.text[:200]}")
        data: Any = resp.json()
        return data.get("sha") if isinstance(data, dict) else None

    async def put_file(self, path: str, text: str, message: str, sha: str | None) -> None:
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        resp = await self.http.put(self._contents_url(path), json=body, headers=self._headers())
        if resp.status_code >= 400:
            raise GitHubPublishError(f"GitHub PUT {path} failed: {resp.status_code} {resp.text[:200]}")

    async def publish(self, content: PublishContent) -> None:
        if not self.token:
            raise GitHubPublishError("GitHub token is required for the GitHub publisher (DIGEST_GITHUB_TOKEN)")
        if not self.repo:
            raise GitHubPublishError("Target repository is required for the GitHub publisher (DIGEST_TARGET_REPO)")

        path = f"{self.posts_dir}/{post_filename(content.date_str)}" if self.posts_dir else post_filename(content.date_str)
        sha = await self.get_file_sha(path)
        verb = "Update" if sha else "Add"
        message = f"{verb} HackerNews daily export for {content.date_str}"

        logger.info("GitHub: %s %s on %s@%s (%d chars)", verb.lower(), path, self.repo, self.branch, len(content.markdown))
        await self.put_file(path, content.markdown, message, sha)
        logger.info("GitHub: pushed %s/%s", self.repo, path)
