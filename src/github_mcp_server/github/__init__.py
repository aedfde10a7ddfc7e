"""GitHub integration for the GitHub MCP Server"""

from .api import (
    authenticate,
    close_issue,
    create_issue,
    create_pr,
    get_file,
    get_pr_details,
    list_directory,
    list_issues,
    list_prs,
    list_repos,
    merge_pr,
    reopen_issue,
    search_repos,
    update_issue,
)
from .auth import Credential, CredentialHolder
from .client import ApiResponse, CallSpec, GitHubClient
from .models import (
    DirectoryEntry,
    FileContent,
    Issue,
    MergeResult,
    Page,
    PullRequest,
    Repository,
    User,
)

__all__ = [
    "GitHubClient",
    "CallSpec",
    "ApiResponse",
    "Credential",
    "CredentialHolder",
    # Read operations
    "list_repos",
    "search_repos",
    "get_file",
    "list_directory",
    "list_issues",
    "list_prs",
    "get_pr_details",
    # Write operations
    "authenticate",
    "create_issue",
    "update_issue",
    "close_issue",
    "reopen_issue",
    "create_pr",
    "merge_pr",
    # Entities
    "DirectoryEntry",
    "FileContent",
    "Issue",
    "MergeResult",
    "Page",
    "PullRequest",
    "Repository",
    "User",
]
