"""GitHub contents API client.

Every call goes through one shared aiohttp session. Transient failures
(network errors, timeouts, 5xx, 429, exhausted rate limit) are retried a
fixed number of times with linear backoff and then surface as
RemoteUnavailable. Status codes map onto the error taxonomy:

    404 on read   -> None / []
    404 on write  -> NotFound (repository missing or empty)
    409, 422      -> Conflict (stale or missing content hash)
    401, 403      -> AccessDenied
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from repodb.config import RemoteConfig
from repodb.errors import AccessDenied, Conflict, EncodingError, NotFound, RemoteUnavailable, RepoDBError
from repodb.models import DirEntry, Identity, RemoteFile, RepoHandle

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"
_RAW_MEDIA_TYPE = "application/vnd.github.raw"


class GitHubStore:
    """RemoteStore backed by the GitHub REST API."""

    def __init__(self, config: RemoteConfig, session: aiohttp.ClientSession | None = None) -> None:
        if not config.token:
            raise ValueError("GitHub token required (set REPODB_GITHUB_TOKEN or remote.token)")
        self._config = config
        self._base_url = config.api_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._identity: Identity | None = None

    async def __aenter__(self) -> GitHubStore:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._config.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": _API_VERSION,
                    "User-Agent": self._config.user_agent,
                },
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            )
            self._owns_session = True
        return self._session

    # ── Transport ────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict | None = None,
        headers: dict[str, str] | None = None,
        raw: bool = False,
    ) -> tuple[int, Any]:
        """Send one API request with retries. Returns (status, decoded body)."""
        session = self._get_session()
        url = f"{self._base_url}{path}"
        attempts = self._config.retries + 1
        attempt = 0

        while True:
            attempt += 1
            try:
                async with session.request(method, url, json=payload, headers=headers) as resp:
                    body = await resp.read() if raw else self._decode(await resp.text())
                    if not self._is_transient(resp.status, resp.headers):
                        return resp.status, body
                    error = RemoteUnavailable(
                        f"{method} {path}: HTTP {resp.status} {self._error_message(body)}"
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = RemoteUnavailable(f"{method} {path}: {e!r}")

            if attempt >= attempts:
                raise error
            delay = self._config.retry_backoff * attempt
            logger.warning("%s (attempt %d/%d), retrying in %.1fs", error, attempt, attempts, delay)
            await asyncio.sleep(delay)

    @staticmethod
    def _decode(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    @staticmethod
    def _is_transient(status: int, headers: Any) -> bool:
        if status >= 500 or status == 429:
            return True
        return status == 403 and headers.get("X-RateLimit-Remaining") == "0"

    @staticmethod
    def _error_message(body: Any) -> str:
        if isinstance(body, dict):
            return str(body.get("message", ""))
        if isinstance(body, bytes):
            return body.decode("utf-8", "replace")
        return str(body or "")

    def _fail(self, status: int, body: Any, what: str) -> RepoDBError:
        """Map an unexpected status onto the error taxonomy."""
        detail = f"{what}: HTTP {status} {self._error_message(body)}".strip()
        if status in (401, 403):
            return AccessDenied(detail)
        if status == 404:
            return NotFound(detail)
        return RepoDBError(detail)

    @staticmethod
    def _utf8(path: str, data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(path, f"not valid UTF-8: {e}") from e

    @staticmethod
    def _contents_path(repo: str, path: str) -> str:
        return f"/repos/{repo}/contents/{quote(path.strip('/'), safe='/')}"

    # ── Files ────────────────────────────────────────────────

    async def get(self, repo: str, path: str) -> RemoteFile | None:
        status, body = await self._request("GET", self._contents_path(repo, path))
        if status == 404:
            return None
        if status != 200:
            raise self._fail(status, body, f"read {repo}:{path}")
        if not isinstance(body, dict) or body.get("type") != "file":
            logger.debug("%s:%s is not a file", repo, path)
            return None

        if body.get("encoding") == "base64":
            content = self._utf8(path, base64.b64decode(body.get("content", "")))
        else:
            # Files over 1 MB come back without inline content
            content = await self._get_raw(repo, path)
        return RemoteFile(path=body.get("path", path), content=content, hash=body["sha"])

    async def _get_raw(self, repo: str, path: str) -> str:
        status, body = await self._request(
            "GET", self._contents_path(repo, path), headers={"Accept": _RAW_MEDIA_TYPE}, raw=True
        )
        if status != 200:
            raise self._fail(status, body, f"read raw {repo}:{path}")
        return self._utf8(path, body or b"")

    async def put(
        self,
        repo: str,
        path: str,
        content: str,
        message: str,
        expected_hash: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if expected_hash:
            payload["sha"] = expected_hash

        status, body = await self._request("PUT", self._contents_path(repo, path), payload=payload)
        if status in (200, 201):
            new_hash = body["content"]["sha"]
            logger.info("Wrote %s:%s (%s)", repo, path, new_hash[:7])
            return new_hash
        if status in (409, 422):
            raise Conflict(path, f"Write to {repo}:{path} rejected: {self._error_message(body)}")
        raise self._fail(status, body, f"write {repo}:{path}")

    async def delete(self, repo: str, path: str, hash: str, message: str) -> None:
        payload = {"message": message, "sha": hash}
        status, body = await self._request("DELETE", self._contents_path(repo, path), payload=payload)
        if status == 200:
            logger.info("Deleted %s:%s", repo, path)
            return
        if status in (409, 422):
            raise Conflict(path, f"Delete of {repo}:{path} rejected: {self._error_message(body)}")
        raise self._fail(status, body, f"delete {repo}:{path}")

    async def list(self, repo: str, directory: str = "") -> list[DirEntry]:
        status, body = await self._request("GET", self._contents_path(repo, directory))
        if status == 404:
            return []
        if status != 200:
            raise self._fail(status, body, f"list {repo}:{directory}")
        items = body if isinstance(body, list) else [body]
        return [
            DirEntry(
                name=item["name"],
                path=item["path"],
                type="dir" if item.get("type") == "dir" else "file",
            )
            for item in items
        ]

    # ── Repositories & identity ──────────────────────────────

    async def get_identity(self) -> Identity:
        if self._identity is None:
            status, body = await self._request("GET", "/user")
            if status != 200:
                raise self._fail(status, body, "get authenticated user")
            self._identity = Identity(login=body["login"], id=body.get("id"))
        return self._identity

    async def get_repo(self, name: str) -> RepoHandle | None:
        identity = await self.get_identity()
        status, body = await self._request("GET", f"/repos/{identity.login}/{name}")
        if status == 404:
            return None
        if status != 200:
            raise self._fail(status, body, f"get repository {name}")
        return RepoHandle(owner=body["owner"]["login"], name=body["name"], private=body.get("private", True))

    async def create_repo(self, name: str, private: bool = True) -> RepoHandle:
        payload = {
            "name": name,
            "private": private,
            "description": "Chat history and settings stored by repodb",
            "auto_init": False,
        }
        status, body = await self._request("POST", "/user/repos", payload=payload)
        if status == 201:
            logger.info("Created repository %s", body["full_name"])
            return RepoHandle(owner=body["owner"]["login"], name=body["name"], private=body.get("private", True))
        if status == 422:
            # Lost a creation race, or the name is taken by an existing repo
            existing = await self.get_repo(name)
            if existing:
                return existing
        raise self._fail(status, body, f"create repository {name}")
