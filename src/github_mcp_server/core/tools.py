"""Tool registry for the GitHub MCP Server"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from mcp.types import Tool

from ..github import api
from ..github.models import (
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
    ToolInput,
)

logger = logging.getLogger(__name__)

Operation = Callable[[Any, Any], Awaitable[Any]]


class GitHubTools(str, Enum):
    """Enumeration of all available GitHub tools"""

    AUTH = "github_auth"

    LIST_REPOS = "github_list_repos"
    SEARCH_REPOS = "github_search_repos"
    GET_FILE = "github_get_file"
    LIST_DIRECTORY = "github_list_directory"

    LIST_ISSUES = "github_list_issues"
    CREATE_ISSUE = "github_create_issue"
    UPDATE_ISSUE = "github_update_issue"
    CLOSE_ISSUE = "github_close_issue"
    REOPEN_ISSUE = "github_reopen_issue"

    LIST_PRS = "github_list_prs"
    CREATE_PR = "github_create_pr"
    GET_PR_DETAILS = "github_get_pr_details"
    MERGE_PR = "github_merge_pr"


class ToolCategory(str, Enum):
    """Tool categories for organization"""

    AUTH = "auth"
    REPOSITORY = "repository"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


@dataclass(frozen=True)
class ToolDefinition:
    """Complete tool definition with metadata"""

    name: str
    category: ToolCategory
    description: str
    schema: Type[ToolInput]
    handler: Operation

    def to_mcp_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.schema.model_json_schema(),
        )


class ToolRegistry:
    """Catalog of tools. Read-only once frozen."""

    def __init__(self):
        self._tools: Dict[str, ToolDefinition] = {}
        self._frozen = False

    def register(self, tool_def: ToolDefinition) -> None:
        """Register a tool in the registry"""
        if self._frozen:
            raise RuntimeError("Tool registry is frozen")
        if tool_def.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool_def.name}")
        self._tools[tool_def.name] = tool_def
        logger.debug(f"Registered tool: {tool_def.name} ({tool_def.category.value})")

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        self._tools = MappingProxyType(dict(self._tools))
        return self

    @property
    def tools(self) -> Mapping[str, ToolDefinition]:
        return self._tools

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        """Get all tools as MCP Tool objects"""
        return [tool_def.to_mcp_tool() for tool_def in self._tools.values()]

    def get_tools_by_category(self, category: ToolCategory) -> List[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]


DEFAULT_TOOLS = (
    ToolDefinition(
        name=GitHubTools.AUTH.value,
        category=ToolCategory.AUTH,
        description="Authenticate with GitHub using a personal access token",
        schema=GitHubAuth,
        handler=api.authenticate,
    ),
    ToolDefinition(
        name=GitHubTools.LIST_REPOS.value,
        category=ToolCategory.REPOSITORY,
        description="List repositories for the authenticated user",
        schema=GitHubListRepos,
        handler=api.list_repos,
    ),
    ToolDefinition(
        name=GitHubTools.SEARCH_REPOS.value,
        category=ToolCategory.REPOSITORY,
        description="Search repositories by free text plus language, user, org, topic and stars filters",
        schema=GitHubSearchRepos,
        handler=api.search_repos,
    ),
    ToolDefinition(
        name=GitHubTools.GET_FILE.value,
        category=ToolCategory.REPOSITORY,
        description="Read a file from a repository, optionally at a branch, tag or commit",
        schema=GitHubGetFile,
        handler=api.get_file,
    ),
    ToolDefinition(
        name=GitHubTools.LIST_DIRECTORY.value,
        category=ToolCategory.REPOSITORY,
        description="List the entries of a repository directory",
        schema=GitHubListDirectory,
        handler=api.list_directory,
    ),
    ToolDefinition(
        name=GitHubTools.LIST_ISSUES.value,
        category=ToolCategory.ISSUE,
        description="List issues in a repository",
        schema=GitHubListIssues,
        handler=api.list_issues,
    ),
    ToolDefinition(
        name=GitHubTools.CREATE_ISSUE.value,
        category=ToolCategory.ISSUE,
        description="Create a new issue",
        schema=GitHubCreateIssue,
        handler=api.create_issue,
    ),
    ToolDefinition(
        name=GitHubTools.UPDATE_ISSUE.value,
        category=ToolCategory.ISSUE,
        description="Update the title, body, state, labels or assignees of an issue",
        schema=GitHubUpdateIssue,
        handler=api.update_issue,
    ),
    ToolDefinition(
        name=GitHubTools.CLOSE_ISSUE.value,
        category=ToolCategory.ISSUE,
        description="Close an issue",
        schema=GitHubCloseIssue,
        handler=api.close_issue,
    ),
    ToolDefinition(
        name=GitHubTools.REOPEN_ISSUE.value,
        category=ToolCategory.ISSUE,
        description="Reopen a closed issue",
        schema=GitHubReopenIssue,
        handler=api.reopen_issue,
    ),
    ToolDefinition(
        name=GitHubTools.LIST_PRS.value,
        category=ToolCategory.PULL_REQUEST,
        description="List pull requests for a repository",
        schema=GitHubListPullRequests,
        handler=api.list_prs,
    ),
    ToolDefinition(
        name=GitHubTools.CREATE_PR.value,
        category=ToolCategory.PULL_REQUEST,
        description="Open a pull request from head into base",
        schema=GitHubCreatePR,
        handler=api.create_pr,
    ),
    ToolDefinition(
        name=GitHubTools.GET_PR_DETAILS.value,
        category=ToolCategory.PULL_REQUEST,
        description="Get comprehensive PR details",
        schema=GitHubGetPRDetails,
        handler=api.get_pr_details,
    ),
    ToolDefinition(
        name=GitHubTools.MERGE_PR.value,
        category=ToolCategory.PULL_REQUEST,
        description="Merge a pull request; fails with ConflictError when it is not mergeable",
        schema=GitHubMergePR,
        handler=api.merge_pr,
    ),
)


def build_default_registry() -> ToolRegistry:
    """Build the frozen catalog of all GitHub tools"""
    registry = ToolRegistry()
    for tool_def in DEFAULT_TOOLS:
        registry.register(tool_def)
    logger.info(f"Initialized tool registry with {len(registry.tools)} tools")
    return registry.freeze()
