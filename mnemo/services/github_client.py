"""GitHub REST v3: the signed-in user's open pull requests."""

from __future__ import annotations

from typing import Any

from mnemo.services.provider_client import ProviderClient

GITHUB_API_URL = "https://api.github.com"


class GitHubClient(ProviderClient):
    provider = "github"
    default_headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    async def list_open_pull_requests(self, token: str) -> list[dict[str, Any]]:
        user = await self._request("GET", f"{GITHUB_API_URL}/user", token, operation="user.get")
        login = user["login"]
        data = await self._request(
            "GET",
            f"{GITHUB_API_URL}/search/issues",
            token,
            operation="search.issues",
            params={"q": f"is:pr author:{login} is:open", "sort": "updated"},
        )
        pulls = []
        for item in (data or {}).get("items", []):
            # repository_url is https://api.github.com/repos/<owner>/<repo>
            owner, _, repo = item.get("repository_url", "").rpartition("/repos/")[2].partition("/")
            pulls.append({
                "number": item.get("number"),
                "title": item.get("title", ""),
                "owner": owner,
                "repo": repo,
                "url": item.get("html_url", ""),
                "updatedAt": item.get("updated_at"),
            })
        return pulls

    async def get_pull_request(
        self, token: str, owner: str, repo: str, number: int,
    ) -> dict[str, Any]:
        pr = await self._request(
            "GET",
            f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls/{number}",
            token,
            operation="pulls.get",
        )
        return {
            "number": pr.get("number"),
            "title": pr.get("title", ""),
            "state": pr.get("state"),
            "author": (pr.get("user") or {}).get("login"),
            "body": pr.get("body") or "",
            "url": pr.get("html_url", ""),
            "head": (pr.get("head") or {}).get("ref"),
            "base": (pr.get("base") or {}).get("ref"),
            "mergeable": pr.get("mergeable"),
            "additions": pr.get("additions"),
            "deletions": pr.get("deletions"),
            "changedFiles": pr.get("changed_files"),
            "comments": pr.get("comments"),
            "createdAt": pr.get("created_at"),
            "updatedAt": pr.get("updated_at"),
        }
