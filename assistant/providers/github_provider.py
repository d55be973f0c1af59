"""
GitHub provider for repository metadata, history and source content (read-only).

Supports a personal/bot token (GITHUB_TOKEN) or GitHub App authentication with
installation tokens.
"""

from __future__ import annotations

import base64
import os
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import jwt
import requests

GITHUB_API = "https://api.github.com"

_GITHUB_URL_RE = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/?#]+)/([^/?#]+)", re.IGNORECASE)


def _strip_git_suffix(name: str) -> str:
    return name[:-4] if name.lower().endswith(".git") else name


def repository_full_name(identifier: str) -> str:
    """
    "org/repo" when the identifier names an owner (URL or pair), else the bare name.

    >>> repository_full_name("https://github.com/acme/api.git")
    'acme/api'
    """
    s = (identifier or "").strip().rstrip("/")
    m = _GITHUB_URL_RE.match(s)
    if m:
        return f"{m.group(1)}/{_strip_git_suffix(m.group(2))}"
    parts = [p for p in s.split("/") if p]
    if len(parts) >= 2:
        return f"{parts[-2]}/{_strip_git_suffix(parts[-1])}"
    return _strip_git_suffix(s)


def normalize_repository_name(identifier: str) -> str:
    """
    Trailing repository segment of a bare name, an "org/repo" pair or a GitHub URL.

    >>> normalize_repository_name("https://www.github.com/acme/api/?tab=readme")
    'api'
    """
    full = repository_full_name(identifier)
    return full.rsplit("/", 1)[-1]


class GitHubProvider(Protocol):
    """Protocol for GitHub API access (read-only).

    `repo` accepts "org/repo" or a bare name resolved against GITHUB_ORG.
    """

    def get_repository_metadata(self, repo: str) -> Dict[str, Any]:
        """
        Returns:
            Dict with name, full_name, description, default_branch, html_url,
            language, topics; or {"error": ..., "message": ...}.
        """
        ...

    def get_recent_commits(
        self,
        repo: str,
        since: datetime,
        until: datetime,
        branch: str = "main",
    ) -> List[Dict[str, Any]]:
        """
        Returns:
            List of commit dicts (sha, author, message, timestamp, url), newest first.
        """
        ...

    def get_file_contents(self, repo: str, path: str, ref: str = "main") -> str:
        """
        Raises:
            Exception on 404 or other errors
        """
        ...

    def get_repository_tree(self, repo: str, branch: str = "main") -> Optional[List[Dict[str, Any]]]:
        """
        Recursive git tree for a branch.

        Returns:
            List of tree entries (path, type, sha, size), or None when the
            repository/branch does not exist.
        """
        ...

    def get_blob_contents(self, repo: str, sha: str) -> Optional[str]:
        """Decoded text of a blob, or None if the API returned no content."""
        ...


_API_HEADERS = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}

# refresh installation tokens this long before GitHub expires them
_TOKEN_SKEW = timedelta(minutes=5)

_METADATA_FIELDS = (
    ("name", ""),
    ("full_name", ""),
    ("description", ""),
    ("default_branch", "main"),
    ("html_url", ""),
    ("language", None),
    ("visibility", None),
    ("updated_at", None),
)


def _b64_text(content: str) -> str:
    return base64.b64decode(content.replace("\n", "")).decode("utf-8", errors="replace")


def _error_entry(e: Exception) -> Dict[str, Any]:
    return {"error": f"github_error:{type(e).__name__}", "message": str(e)}


def _commit_summary(c: Dict[str, Any]) -> Dict[str, Any]:
    commit = c.get("commit") or {}
    author = commit.get("author") or {}
    return {
        "sha": (c.get("sha") or "")[:7],
        "author": author.get("name") or "Unknown",
        "message": (commit.get("message") or "")[:300],
        "timestamp": author.get("date") or "",
        "url": c.get("html_url") or "",
    }


class GitHubCredentials:
    """
    Bearer token source: a static GITHUB_TOKEN, or short-lived GitHub App
    installation tokens minted from an RS256 app JWT and cached until near expiry.
    """

    def __init__(self, api_url: str) -> None:
        self.api_url = api_url
        self.static_token = (os.getenv("GITHUB_TOKEN") or "").strip()
        self.app_id = (os.getenv("GITHUB_APP_ID") or "").strip()
        self.private_key = (os.getenv("GITHUB_APP_PRIVATE_KEY") or "").replace("\\n", "\n")
        self.installation_id = (
            os.getenv("GITHUB_APP_INSTALLATION_ID") or os.getenv("GITHUB_INSTALLATION_ID") or ""
        ).strip()
        self._cached: Optional[Tuple[str, datetime]] = None

    def _app_jwt(self) -> str:
        if not (self.app_id and self.private_key):
            raise ValueError("GITHUB_TOKEN or GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY required")
        issued = int(time.time()) - 60
        return jwt.encode({"iat": issued, "exp": issued + 600, "iss": self.app_id}, self.private_key, algorithm="RS256")

    def bearer(self) -> str:
        if self.static_token:
            return self.static_token
        if self._cached and datetime.now(timezone.utc) < self._cached[1] - _TOKEN_SKEW:
            return self._cached[0]
        if not self.installation_id:
            raise ValueError("GITHUB_APP_INSTALLATION_ID required")

        resp = requests.post(
            f"{self.api_url}/app/installations/{self.installation_id}/access_tokens",
            headers={**_API_HEADERS, "Authorization": f"Bearer {self._app_jwt()}"},
            timeout=10,
        )
        resp.raise_for_status()
        body = resp.json()
        expires = datetime.fromisoformat(str(body["expires_at"]).replace("Z", "+00:00"))
        self._cached = (body["token"], expires)
        return body["token"]


class DefaultGitHubProvider:
    """
    GitHub REST provider.

    Environment variables:
    - GITHUB_ORG: organization used to qualify bare repository names
    - GITHUB_TOKEN, or GITHUB_APP_ID / GITHUB_APP_PRIVATE_KEY / GITHUB_APP_INSTALLATION_ID
    - GITHUB_API_URL: API base (default https://api.github.com)
    """

    def __init__(self) -> None:
        self.org = (os.getenv("GITHUB_ORG") or "").strip()
        self.api_url = ((os.getenv("GITHUB_API_URL") or "").strip() or GITHUB_API).rstrip("/")
        self.credentials = GitHubCredentials(self.api_url)

    def _full_name(self, repo: str) -> str:
        r = (repo or "").strip().strip("/")
        if not r:
            raise ValueError("repository name required")
        if "/" in r:
            return r
        if not self.org:
            raise ValueError(f"GITHUB_ORG required to resolve bare repository name: {r}")
        return f"{self.org}/{r}"

    def _get(self, repo: str, suffix: str = "", params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET /repos/<full name><suffix> and decode the JSON body.

        Raises:
            requests.HTTPError on non-2xx responses
        """
        resp = requests.request(
            "GET",
            f"{self.api_url}/repos/{self._full_name(repo)}{suffix}",
            headers={**_API_HEADERS, "Authorization": f"Bearer {self.credentials.bearer()}"},
            params=params,
            timeout=15,
        )
        resp.raise_for_status()
        return resp.json()

    def get_repository_metadata(self, repo: str) -> Dict[str, Any]:
        try:
            data = self._get(repo)
        except Exception as e:
            return _error_entry(e)
        out = {k: data.get(k, default) for k, default in _METADATA_FIELDS}
        out["topics"] = data.get("topics") or []
        return out

    def get_recent_commits(
        self,
        repo: str,
        since: datetime,
        until: datetime,
        branch: str = "main",
    ) -> List[Dict[str, Any]]:
        params = {"sha": branch, "since": since.isoformat(), "until": until.isoformat(), "per_page": 100}
        try:
            raw = self._get(repo, "/commits", params=params)
        except Exception as e:
            return [_error_entry(e)]
        return [_commit_summary(c) for c in raw or []]

    def get_file_contents(self, repo: str, path: str, ref: str = "main") -> str:
        data = self._get(repo, f"/contents/{path.lstrip('/')}", params={"ref": ref})
        if isinstance(data, dict) and "content" in data:
            return _b64_text(data["content"])
        raise ValueError(f"No content in response for {path}")

    def get_repository_tree(self, repo: str, branch: str = "main") -> Optional[List[Dict[str, Any]]]:
        try:
            data = self._get(repo, f"/git/trees/{branch}", params={"recursive": "1"})
        except requests.HTTPError as e:
            # 404: unknown repo or branch; 409: empty repository
            if e.response is not None and e.response.status_code in (404, 409):
                return None
            raise
        tree = data.get("tree") if isinstance(data, dict) else None
        return tree if isinstance(tree, list) else None

    def get_blob_contents(self, repo: str, sha: str) -> Optional[str]:
        data = self._get(repo, f"/git/blobs/{sha}")
        content = data.get("content") if isinstance(data, dict) else None
        if not content:
            return None
        if (data.get("encoding") or "base64") == "base64":
            return _b64_text(content)
        return str(content)


_github_provider: Optional[GitHubProvider] = None


def get_github_provider() -> GitHubProvider:
    """Get GitHub provider instance (singleton, configured from env)."""
    global _github_provider
    if _github_provider is None:
        _github_provider = DefaultGitHubProvider()
    return _github_provider


def set_github_provider(provider: Optional[GitHubProvider]) -> None:
    """Set GitHub provider instance (for testing)."""
    global _github_provider
    _github_provider = provider
