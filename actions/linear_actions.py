"""
Linear actions — GraphQL queries and mutations.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from actions import action
from actions.base import ActionContext, require_params
from connectors.linear import LINEAR_API_URL
from utils.errors import ActionError

logger = logging.getLogger(__name__)

_CREATE_ISSUE = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id title identifier url }
  }
}
"""

_LIST_TEAMS = """
query {
  teams { nodes { id name key } }
}
"""

_SEARCH_ISSUES = """
query SearchIssues($query: String!, $first: Int!) {
  issueSearch(query: $query, first: $first) {
    nodes { id title identifier url state { name } }
  }
}
"""


async def _graphql(ctx: ActionContext, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"query": query}
    if variables is not None:
        body["variables"] = variables
    resp = await ctx.http.post(
        LINEAR_API_URL,
        headers={"Authorization": f"Bearer {ctx.access_token}"},
        json=body,
    )
    data = resp.json()
    if data.get("errors"):
        raise ActionError(f"Linear API error: {data['errors'][0].get('message')}")
    if resp.is_error:
        raise ActionError(f"Linear API error ({resp.status_code}): {resp.text}")
    return data.get("data") or {}


@action("linear", "create-issue")
async def create_issue(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    require_params(params, "title", "teamId")
    fields = ("title", "description", "teamId", "priority", "assigneeId", "labelIds")
    issue_input = {k: params[k] for k in fields if params.get(k) is not None}

    data = await _graphql(ctx, _CREATE_ISSUE, {"input": issue_input})
    issue = data["issueCreate"]["issue"]
    logger.info("create_issue → account=%s  issue=%s", ctx.account_id, issue.get("identifier"))
    return issue


@action("linear", "list-teams")
async def list_teams(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    data = await _graphql(ctx, _LIST_TEAMS)
    return {"teams": data["teams"]["nodes"]}


@action("linear", "search-issues")
async def search_issues(ctx: ActionContext, params: Dict[str, Any]) -> Dict[str, Any]:
    require_params(params, "query")
    data = await _graphql(
        ctx,
        _SEARCH_ISSUES,
        {"query": params["query"], "first": int(params.get("limit", 10))},
    )
    return {"issues": data["issueSearch"]["nodes"]}
