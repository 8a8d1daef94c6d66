"""GitHub REST API client for hosting operations.

Lists repositories and branches and opens pull requests on behalf of the
owner of an access token.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from .models import PullRequestRef

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

DEFAULT_TIMEOUT = 30

# Upper bound on pages fetched when listing
MAX_PAGES = 10


class HostingError(Exception):
    """Exception raised for GitHub API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """Client for the GitHub REST API, bound to one access token."""

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            token: Personal access token or app token.
            api_url: API base URL (GitHub Enterprise uses a different one).
            timeout: Request timeout in seconds.
        """
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if not url.startswith("http"):
            url = f"{self.api_url}{url}"

        try:
            response = requests.request(
                method,
                url,
                headers=self.headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise HostingError(
                f"GitHub API request timed out after {self.timeout} seconds"
            ) from exc
        except requests.ConnectionError as exc:
            raise HostingError(f"Failed to connect to GitHub API: {exc}") from exc
        except requests.RequestException as exc:
            raise HostingError(f"GitHub API request failed: {exc}") from exc

        if response.ok:
            return response

        detail = ""
        try:
            error_data = response.json()
            detail = error_data.get("message", "")
            errors = error_data.get("errors") or []
            messages = [e.get("message", "") for e in errors if isinstance(e, dict)]
            if any(messages):
                detail = f"{detail} ({'; '.join(m for m in messages if m)})"
        except ValueError:
            detail = response.text[:500]

        if response.status_code == 401:
            raise HostingError(
                f"GitHub rejected the access token: {detail}", response.status_code
            )
        if response.status_code == 403:
            raise HostingError(
                f"Access token lacks permission or rate limit exceeded: {detail}",
                response.status_code,
            )
        if response.status_code == 404:
            raise HostingError(f"Not found on GitHub: {detail}", response.status_code)
        raise HostingError(
            f"GitHub API error {response.status_code}: {detail}", response.status_code
        )

    def _get_paginated(self, path: str, params: Optional[dict] = None) -> list[dict]:
        items: list[dict] = []
        url: Optional[str] = path
        query = dict(params or {}, per_page=100)
        for _ in range(MAX_PAGES):
            if url is None:
                break
            response = self._request("GET", url, params=query)
            items.extend(response.json())
            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string
            query = None
        return items

    def list_repositories(self) -> list[dict]:
        """List repositories the token can access, most recently updated first."""
        repos = self._get_paginated("/user/repos", {"sort": "updated"})
        return [
            {
                "id": repo.get("id"),
                "name": repo.get("name"),
                "full_name": repo.get("full_name"),
                "private": repo.get("private", False),
                "default_branch": repo.get("default_branch"),
                "updated_at": repo.get("updated_at"),
            }
            for repo in repos
        ]

    def list_branches(self, owner: str, repo: str) -> list[dict]:
        """List branches of a repository."""
        branches = self._get_paginated(f"/repos/{owner}/{repo}/branches")
        return [
            {
                "name": branch.get("name"),
                "protected": branch.get("protected", False),
            }
            for branch in branches
        ]

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequestRef:
        """Open a pull request from ``head`` onto ``base``.

        Raises:
            HostingError: If GitHub refuses the pull request.
        """
        logger.info(f"Opening pull request {owner}/{repo}: {head} -> {base}")
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        data = response.json()
        try:
            return PullRequestRef(url=data["html_url"], number=int(data["number"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise HostingError(f"Unexpected GitHub API response format: {exc}") from exc


class MockGitHubClient:
    """Mock GitHub client for testing without API calls."""

    def __init__(self, token: str = "mock-token"):
        self.token = token
        self.pull_requests: list[dict] = []
        self.should_fail: bool = False
        self.fail_error: str = "Mock GitHub failure"
        self.repositories = [
            {
                "id": 1,
                "name": "demo",
                "full_name": "octocat/demo",
                "private": False,
                "default_branch": "main",
                "updated_at": "",
            }
        ]
        self.branches = [{"name": "main", "protected": False}]

    def _check(self) -> None:
        if self.should_fail:
            raise HostingError(self.fail_error, 500)

    def list_repositories(self) -> list[dict]:
        self._check()
        return list(self.repositories)

    def list_branches(self, owner: str, repo: str) -> list[dict]:
        self._check()
        return list(self.branches)

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequestRef:
        self._check()
        number = len(self.pull_requests) + 1
        self.pull_requests.append({
            "owner": owner,
            "repo": repo,
            "head": head,
            "base": base,
            "title": title,
            "body": body,
        })
        return PullRequestRef(
            url=f"https://github.com/{owner}/{repo}/pull/{number}",
            number=number,
        )
