"""GitHub API operations for the GitHub MCP Server.

Each operation pairs a pure ``build_*`` function, which shapes a ``CallSpec``
from validated tool input, with a decoder that maps the response into domain
entities. Nothing here touches HTTP directly; ``GitHubClient.execute`` does.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, quote, urlparse

from ..error_handling import ConflictError, GitHubApiError, ValidationError
from .auth import Credential, validate_token_format
from .client import ApiResponse, CallSpec, GitHubClient
from .models import (
    DirectoryEntry,
    FileContent,
    GitHubAuth,
    GitHubCloseIssue,
    GitHubCreateIssue,
    GitHubCreatePR,
    GitHubGetFile,
    GitHubGetPRDetails,
    GitHubListDirectory,
    GitHubListIssues,
    GitHubListPullRequests,
    GitHubListRepos,
    GitHubMergePR,
    GitHubReopenIssue,
    GitHubSearchRepos,
    GitHubUpdateIssue,
    Issue,
    MergeResult,
    Page,
    PullRequest,
    Repository,
    User,
)

logger = logging.getLogger(__name__)

_LINK_PATTERN = re.compile(r'<([^>]+)>\s*;\s*rel="([^"]+)"')
_STARS_PATTERN = re.compile(r"^(?:[<>]=?\d+|\d+|\d+\.\.\d+|\d+\.\.\*|\*\.\.\d+)$")


def parse_next_cursor(link_header: Optional[str]) -> Optional[int]:
    """Extract the next page number from a ``Link`` header."""
    if not link_header:
        return None
    for url, rel in _LINK_PATTERN.findall(link_header):
        if rel == "next":
            pages = parse_qs(urlparse(url).query).get("page")
            if pages and pages[0].isdigit():
                return int(pages[0])
    return None


def _repo_path(owner: str, name: str, *parts: Any) -> str:
    segments = ["repos", quote(owner, safe=""), quote(name, safe="")]
    segments.extend(str(part) for part in parts)
    return "/" + "/".join(segments)


def _contents_path(owner: str, name: str, path: str) -> str:
    return _repo_path(owner, name, "contents") + "/" + quote(path.strip("/"), safe="/")


def _page(response: ApiResponse, items: List[Any]) -> Page:
    return Page(items=items, next_cursor=parse_next_cursor(response.headers.get("link")))


def _expect_list(response: ApiResponse, key: Optional[str] = None) -> List[Dict[str, Any]]:
    data = response.data
    if key is not None and isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, list):
        raise GitHubApiError("Unexpected response format from GitHub", {"status": response.status})
    return data


# Authentication
def build_authenticate(token: str) -> CallSpec:
    return CallSpec("GET", "/user", credential=Credential(validate_token_format(token)))


async def authenticate(client: GitHubClient, params: GitHubAuth) -> User:
    """Validate a token against GET /user and, on success, store it."""
    spec = build_authenticate(params.token)
    response = await client.execute(spec)
    user = User.from_api(response.data)
    credential = client.credentials.set(spec.credential.value)
    client.credentials.record_validity(credential, True)
    logger.info(f"✅ Authenticated as {user.login}")
    return user


# Repository operations
def build_list_repos(params: GitHubListRepos) -> CallSpec:
    return CallSpec(
        "GET",
        "/user/repos",
        params={
            "visibility": params.visibility,
            "sort": params.sort,
            "direction": params.direction,
            "per_page": params.per_page,
            "page": params.page,
        },
    )


async def list_repos(client: GitHubClient, params: GitHubListRepos) -> Page:
    response = await client.execute(build_list_repos(params))
    return _page(response, [Repository.from_api(r) for r in _expect_list(response)])


def _qualifier(name: str, value: str) -> str:
    if re.search(r"\s", value):
        value = '"' + value.replace('"', "") + '"'
    return f"{name}:{value}"


def build_search_query(params: GitHubSearchRepos) -> str:
    """Join free text and qualifiers with spaces, GitHub's AND joiner.

    Raises:
        ValidationError: for filter combinations GitHub would reject.
    """
    if params.user and params.org:
        raise ValidationError("user and org filters are mutually exclusive", field="org")
    if params.stars is not None and not _STARS_PATTERN.match(params.stars.replace(" ", "")):
        raise ValidationError(
            f"Invalid stars filter {params.stars!r}; use N, >N, >=N, <N, <=N or N..M",
            field="stars",
        )

    terms = [params.query.strip()] if params.query.strip() else []
    for name in ("language", "user", "org", "topic"):
        value = getattr(params, name)
        if value:
            terms.append(_qualifier(name, value.strip()))
    if params.stars is not None:
        terms.append(f"stars:{params.stars.replace(' ', '')}")
    if params.archived is not None:
        terms.append(f"archived:{'true' if params.archived else 'false'}")
    if params.fork is not None:
        terms.append(f"fork:{params.fork}")

    if not terms:
        raise ValidationError("A search query or at least one filter is required", field="query")
    return " ".join(terms)


def build_search_repos(params: GitHubSearchRepos) -> CallSpec:
    query = {
        "q": build_search_query(params),
        "order": params.order,
        "per_page": params.per_page,
        "page": params.page,
    }
    if params.sort:
        query["sort"] = params.sort
    return CallSpec("GET", "/search/repositories", params=query)


async def search_repos(client: GitHubClient, params: GitHubSearchRepos) -> Page:
    response = await client.execute(build_search_repos(params))
    return _page(response, [Repository.from_api(r) for r in _expect_list(response, "items")])


def build_get_file(params: GitHubGetFile) -> CallSpec:
    return CallSpec(
        "GET",
        _contents_path(params.owner, params.name, params.path),
        params={"ref": params.ref},
    )


async def get_file(client: GitHubClient, params: GitHubGetFile) -> FileContent:
    response = await client.execute(build_get_file(params))
    data = response.data
    if isinstance(data, list):
        raise ValidationError(f"{params.path} is a directory; use github_list_directory", field="path")
    if not isinstance(data, dict) or data.get("type", "file") != "file":
        kind = data.get("type") if isinstance(data, dict) else "unknown"
        raise ValidationError(f"{params.path} is not a regular file ({kind})", field="path")
    try:
        return FileContent.from_api(data)
    except ValueError as e:
        raise GitHubApiError(f"Malformed content for {params.path}: {e}") from e


def build_list_directory(params: GitHubListDirectory) -> CallSpec:
    if params.path.strip("/"):
        path = _contents_path(params.owner, params.name, params.path)
    else:
        path = _repo_path(params.owner, params.name, "contents")
    return CallSpec("GET", path, params={"ref": params.ref})


async def list_directory(client: GitHubClient, params: GitHubListDirectory) -> Page:
    response = await client.execute(build_list_directory(params))
    if isinstance(response.data, dict):
        raise ValidationError(f"{params.path} is a file; use github_get_file", field="path")
    entries = [DirectoryEntry.from_api(item) for item in _expect_list(response)]
    return Page(items=entries)


# Issue operations
def build_list_issues(params: GitHubListIssues) -> CallSpec:
    return CallSpec(
        "GET",
        _repo_path(params.owner, params.name, "issues"),
        params={
            "state": params.state,
            "labels": params.labels or None,
            "assignee": params.assignee,
            "sort": params.sort,
            "direction": params.direction,
            "per_page": params.per_page,
            "page": params.page,
        },
    )


async def list_issues(client: GitHubClient, params: GitHubListIssues) -> Page:
    response = await client.execute(build_list_issues(params))
    return _page(response, [Issue.from_api(i) for i in _expect_list(response)])


def build_create_issue(params: GitHubCreateIssue) -> CallSpec:
    body: Dict[str, Any] = {"title": params.title}
    for key in ("body", "labels", "assignees"):
        value = getattr(params, key)
        if value is not None:
            body[key] = value
    return CallSpec("POST", _repo_path(params.owner, params.name, "issues"), body=body)


async def create_issue(client: GitHubClient, params: GitHubCreateIssue) -> Issue:
    response = await client.execute(build_create_issue(params))
    issue = Issue.from_api(response.data)
    logger.info(f"Created issue #{issue.number} in {params.repo}")
    return issue


_ISSUE_UPDATE_FIELDS = ("title", "body", "state", "state_reason", "labels", "assignees")


def build_update_issue(params: GitHubUpdateIssue) -> CallSpec:
    body = {key: getattr(params, key) for key in _ISSUE_UPDATE_FIELDS if getattr(params, key) is not None}
    if not body:
        raise ValidationError(
            "Nothing to update; provide at least one of " + ", ".join(_ISSUE_UPDATE_FIELDS),
            field=_ISSUE_UPDATE_FIELDS[0],
            reason="at least one of " + ", ".join(_ISSUE_UPDATE_FIELDS) + " is required",
        )
    return CallSpec(
        "PATCH", _repo_path(params.owner, params.name, "issues", params.issue_number), body=body
    )


async def update_issue(client: GitHubClient, params: GitHubUpdateIssue) -> Issue:
    response = await client.execute(build_update_issue(params))
    return Issue.from_api(response.data)


def _build_issue_state(owner: str, name: str, number: int, body: Dict[str, Any]) -> CallSpec:
    # setting a fixed target state can be repeated safely
    return CallSpec("PATCH", _repo_path(owner, name, "issues", number), body=body, idempotent=True)


def build_close_issue(params: GitHubCloseIssue) -> CallSpec:
    return _build_issue_state(
        params.owner,
        params.name,
        params.issue_number,
        {"state": "closed", "state_reason": params.state_reason},
    )


def build_reopen_issue(params: GitHubReopenIssue) -> CallSpec:
    return _build_issue_state(params.owner, params.name, params.issue_number, {"state": "open"})


async def close_issue(client: GitHubClient, params: GitHubCloseIssue) -> Issue:
    response = await client.execute(build_close_issue(params))
    logger.info(f"Closed issue #{params.issue_number} in {params.repo}")
    return Issue.from_api(response.data)


async def reopen_issue(client: GitHubClient, params: GitHubReopenIssue) -> Issue:
    response = await client.execute(build_reopen_issue(params))
    logger.info(f"Reopened issue #{params.issue_number} in {params.repo}")
    return Issue.from_api(response.data)


# Pull request operations
def build_list_prs(params: GitHubListPullRequests) -> CallSpec:
    return CallSpec(
        "GET",
        _repo_path(params.owner, params.name, "pulls"),
        params={
            "state": params.state,
            "head": params.head,
            "base": params.base,
            "sort": params.sort,
            "direction": params.direction,
            "per_page": params.per_page,
            "page": params.page,
        },
    )


async def list_prs(client: GitHubClient, params: GitHubListPullRequests) -> Page:
    response = await client.execute(build_list_prs(params))
    return _page(response, [PullRequest.from_api(pr) for pr in _expect_list(response)])


def build_create_pr(params: GitHubCreatePR) -> CallSpec:
    if params.head == params.base:
        raise ValidationError("head and base must be different branches", field="head")
    body: Dict[str, Any] = {
        "title": params.title,
        "head": params.head,
        "base": params.base,
        "draft": params.draft,
    }
    if params.body is not None:
        body["body"] = params.body
    return CallSpec("POST", _repo_path(params.owner, params.name, "pulls"), body=body)


async def create_pr(client: GitHubClient, params: GitHubCreatePR) -> PullRequest:
    response = await client.execute(build_create_pr(params))
    pr = PullRequest.from_api(response.data)
    logger.info(f"Created pull request #{pr.number} in {params.repo}")
    return pr


def build_get_pr_details(params: GitHubGetPRDetails) -> CallSpec:
    return CallSpec("GET", _repo_path(params.owner, params.name, "pulls", params.pr_number))


async def get_pr_details(client: GitHubClient, params: GitHubGetPRDetails) -> PullRequest:
    response = await client.execute(build_get_pr_details(params))
    return PullRequest.from_api(response.data)


def build_merge_pr(params: GitHubMergePR) -> CallSpec:
    body: Dict[str, Any] = {"merge_method": params.merge_method}
    for key in ("commit_title", "commit_message", "sha"):
        value = getattr(params, key)
        if value is not None:
            body[key] = value
    return CallSpec(
        "PUT", _repo_path(params.owner, params.name, "pulls", params.pr_number, "merge"), body=body
    )


async def merge_pr(client: GitHubClient, params: GitHubMergePR) -> MergeResult:
    try:
        response = await client.execute(build_merge_pr(params))
    except GitHubApiError as e:
        # 405: not mergeable
        if (e.detail or {}).get("status") == 405:
            raise ConflictError(
                f"Pull request #{params.pr_number} is not mergeable: {e.message}",
                {"status": 405},
            ) from e
        raise
    result = MergeResult.from_api(response.data or {})
    if not result.merged:
        raise ConflictError(
            f"Pull request #{params.pr_number} was not merged: {result.message or 'unknown reason'}",
            {"status": response.status},
        )
    logger.info(f"Merged pull request #{params.pr_number} in {params.repo}")
    return result
