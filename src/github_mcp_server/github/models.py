"""Pydantic models for GitHub API tools and the entities they return"""

import base64
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Generic, List, Literal, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field

RepoName = Annotated[
    str,
    Field(
        pattern=r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$",
        description="Repository in owner/name form",
    ),
]
PerPage = Annotated[int, Field(ge=1, le=100, description="Results per page (max 100)")]
PageNumber = Annotated[
    int, Field(ge=1, description="Page cursor; pass the previous response's next_cursor")
]
Direction = Literal["asc", "desc"]


# Tool input models
class ToolInput(BaseModel):
    """Strict base for tool arguments: no coercion between JSON types."""

    model_config = ConfigDict(strict=True, extra="ignore")


class RepoInput(ToolInput):
    repo: RepoName

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]


class GitHubAuth(ToolInput):
    token: str = Field(min_length=1, description="GitHub personal access token")


class GitHubListRepos(ToolInput):
    visibility: Literal["all", "public", "private"] = "all"
    sort: Literal["created", "updated", "pushed", "full_name"] = "updated"
    direction: Direction = "desc"
    per_page: PerPage = 30
    page: PageNumber = 1


class GitHubSearchRepos(ToolInput):
    query: str = Field(description="Free-text search terms")
    language: Optional[str] = None
    user: Optional[str] = None
    org: Optional[str] = None
    topic: Optional[str] = None
    stars: Optional[str] = Field(default=None, description="e.g. '>100', '10..50'")
    archived: Optional[bool] = None
    fork: Optional[Literal["true", "only"]] = None
    sort: Optional[Literal["stars", "forks", "help-wanted-issues", "updated"]] = None
    order: Direction = "desc"
    per_page: PerPage = 30
    page: PageNumber = 1


class GitHubGetFile(RepoInput):
    path: str = Field(min_length=1)
    ref: Optional[str] = Field(default=None, description="Branch, tag or commit SHA")


class GitHubListDirectory(RepoInput):
    path: str = ""
    ref: Optional[str] = None


class GitHubListIssues(RepoInput):
    state: Literal["open", "closed", "all"] = "open"
    labels: Optional[List[str]] = None
    assignee: Optional[str] = None
    sort: Literal["created", "updated", "comments"] = "created"
    direction: Direction = "desc"
    per_page: PerPage = 30
    page: PageNumber = 1


class GitHubCreateIssue(RepoInput):
    title: str = Field(min_length=1)
    body: Optional[str] = None
    labels: Optional[List[str]] = None
    assignees: Optional[List[str]] = None


class GitHubUpdateIssue(RepoInput):
    issue_number: int = Field(ge=1)
    title: Optional[str] = Field(default=None, min_length=1)
    body: Optional[str] = None
    state: Optional[Literal["open", "closed"]] = None
    state_reason: Optional[Literal["completed", "not_planned", "reopened"]] = None
    labels: Optional[List[str]] = None
    assignees: Optional[List[str]] = None


class GitHubCloseIssue(RepoInput):
    issue_number: int = Field(ge=1)
    state_reason: Literal["completed", "not_planned"] = "completed"


class GitHubReopenIssue(RepoInput):
    issue_number: int = Field(ge=1)


class GitHubListPullRequests(RepoInput):
    state: Literal["open", "closed", "all"] = "open"
    head: Optional[str] = Field(default=None, description="Filter by head, user:ref-name")
    base: Optional[str] = None
    sort: Literal["created", "updated", "popularity", "long-running"] = "created"
    direction: Direction = "desc"
    per_page: PerPage = 30
    page: PageNumber = 1


class GitHubCreatePR(RepoInput):
    title: str = Field(min_length=1)
    head: str = Field(min_length=1, description="Branch containing the changes")
    base: str = Field(min_length=1, description="Branch to merge into")
    body: Optional[str] = None
    draft: bool = False


class GitHubGetPRDetails(RepoInput):
    pr_number: int = Field(ge=1)


class GitHubMergePR(RepoInput):
    pr_number: int = Field(ge=1)
    merge_method: Literal["merge", "squash", "rebase"] = "merge"
    commit_title: Optional[str] = None
    commit_message: Optional[str] = None
    sha: Optional[str] = Field(default=None, description="Expected head SHA")


# Domain entities
class Entity(BaseModel):
    """Flat, immutable record mapped from a GitHub API response."""

    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def _login(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return user.get("login") if user else None


class User(Entity):
    login: str
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    type: str = "User"
    html_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "User":
        return cls(
            login=data["login"],
            id=data["id"],
            name=data.get("name"),
            email=data.get("email"),
            type=data.get("type") or "User",
            html_url=data.get("html_url"),
        )


class Label(Entity):
    name: str
    color: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_api(cls, data: Any) -> "Label":
        # issue payloads may carry bare label names
        if isinstance(data, str):
            return cls(name=data)
        return cls(name=data["name"], color=data.get("color"), description=data.get("description"))


class Repository(Entity):
    full_name: str
    name: str
    owner: Optional[str] = None
    description: Optional[str] = None
    private: bool = False
    visibility: str = "public"
    html_url: Optional[str] = None
    default_branch: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    topics: List[str] = Field(default_factory=list)
    archived: bool = False
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        private = bool(data.get("private", False))
        return cls(
            full_name=data["full_name"],
            name=data["name"],
            owner=_login(data.get("owner")),
            description=data.get("description"),
            private=private,
            visibility=data.get("visibility") or ("private" if private else "public"),
            html_url=data.get("html_url"),
            default_branch=data.get("default_branch"),
            language=data.get("language"),
            stars=data.get("stargazers_count") or 0,
            forks=data.get("forks_count") or 0,
            open_issues=data.get("open_issues_count") or 0,
            topics=list(data.get("topics") or []),
            archived=bool(data.get("archived", False)),
            updated_at=data.get("updated_at"),
        )


class Issue(Entity):
    number: int
    title: str
    state: str
    state_reason: Optional[str] = None
    body: Optional[str] = None
    author: Optional[str] = None
    labels: List[Label] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)
    comments: int = 0
    is_pull_request: bool = False
    html_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    closed_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            number=data["number"],
            title=data["title"],
            state=data["state"],
            state_reason=data.get("state_reason"),
            body=data.get("body"),
            author=_login(data.get("user")),
            labels=[Label.from_api(label) for label in data.get("labels") or []],
            assignees=[a["login"] for a in data.get("assignees") or [] if a],
            comments=data.get("comments") or 0,
            is_pull_request="pull_request" in data,
            html_url=data.get("html_url"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            closed_at=data.get("closed_at"),
        )


class PullRequest(Entity):
    number: int
    title: str
    state: str
    body: Optional[str] = None
    author: Optional[str] = None
    draft: bool = False
    merged: bool = False
    mergeable: Optional[bool] = None
    mergeable_state: Optional[str] = None
    head: Optional[str] = None
    head_sha: Optional[str] = None
    base: Optional[str] = None
    html_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    merged_at: Optional[str] = None
    # only present on single pull request responses
    commits: Optional[int] = None
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changed_files: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PullRequest":
        head = data.get("head") or {}
        base = data.get("base") or {}
        return cls(
            number=data["number"],
            title=data["title"],
            state=data["state"],
            body=data.get("body"),
            author=_login(data.get("user")),
            draft=bool(data.get("draft", False)),
            merged=bool(data.get("merged") or data.get("merged_at")),
            mergeable=data.get("mergeable"),
            mergeable_state=data.get("mergeable_state"),
            head=head.get("ref"),
            head_sha=head.get("sha"),
            base=base.get("ref"),
            html_url=data.get("html_url"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            merged_at=data.get("merged_at"),
            commits=data.get("commits"),
            additions=data.get("additions"),
            deletions=data.get("deletions"),
            changed_files=data.get("changed_files"),
        )


class FileContent(Entity):
    """A file read through the contents API.

    ``encoding`` is ``utf-8`` when ``content`` holds the decoded text,
    ``binary`` when the file is not text, and ``none`` when GitHub did not
    inline the content (files over 1 MB). ``size`` and ``sha`` are always set.
    """

    name: str
    path: str
    sha: str
    size: int
    encoding: Literal["utf-8", "binary", "none"]
    content: Optional[str] = None
    html_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "FileContent":
        encoding, content = "none", None
        if data.get("encoding") == "base64":
            raw = base64.b64decode("".join((data.get("content") or "").split()), validate=True)
            content = _as_text(raw)
            encoding = "binary" if content is None else "utf-8"
        return cls(
            name=data["name"],
            path=data["path"],
            sha=data["sha"],
            size=data.get("size") or 0,
            encoding=encoding,
            content=content,
            html_url=data.get("html_url"),
        )

    def as_bytes(self) -> Optional[bytes]:
        if self.content is None:
            return None
        return self.content.encode("utf-8")


def _as_text(raw: bytes) -> Optional[str]:
    if b"\x00" in raw:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


class DirectoryEntry(Entity):
    name: str
    path: str
    type: str
    size: int = 0
    sha: Optional[str] = None
    html_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DirectoryEntry":
        return cls(
            name=data["name"],
            path=data["path"],
            type=data["type"],
            size=data.get("size") or 0,
            sha=data.get("sha"),
            html_url=data.get("html_url"),
        )


class MergeResult(Entity):
    merged: bool
    sha: Optional[str] = None
    message: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MergeResult":
        return cls(merged=bool(data.get("merged")), sha=data.get("sha"), message=data.get("message") or "")


E = TypeVar("E", bound=Entity)


@dataclass(frozen=True)
class Page(Generic[E]):
    """One page of a list operation. ``next_cursor`` is None on the last page."""

    items: Sequence[E]
    next_cursor: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "items": [item.to_payload() for item in self.items],
            "next_cursor": self.next_cursor,
        }

