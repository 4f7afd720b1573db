"""Typed views over the subset of GitHub payload fields Weir relies on.

Payloads arrive as decoded JSON; :func:`decode_payload` converts them with
``msgspec`` so canonicalization code works with attributes instead of
nested ``dict.get`` chains. Unknown fields are ignored.
"""

from __future__ import annotations

import typing as typ

import msgspec

from weir.silver.errors import CanonicalFactPersistError


class GitHubUser(msgspec.Struct, kw_only=True):
    """User, bot or commit author as GitHub reports it."""

    id: int | None = None
    login: str | None = None
    node_id: str | None = None
    avatar_url: str | None = None
    name: str | None = None
    username: str | None = None
    email: str | None = None
    date: str | None = None


class GitHubRepository(msgspec.Struct, kw_only=True):
    """Repository block embedded in webhook payloads and REST responses."""

    id: int | None = None
    node_id: str | None = None
    name: str | None = None
    full_name: str | None = None
    html_url: str | None = None
    default_branch: str | None = None
    visibility: str | None = None
    owner: GitHubUser | None = None


class BranchRef(msgspec.Struct, kw_only=True):
    """Head or base branch of a pull request."""

    ref: str | None = None


class PullRequest(msgspec.Struct, kw_only=True):
    """Pull request object from ``pull_request`` deliveries."""

    number: int
    id: int | None = None
    node_id: str | None = None
    title: str | None = None
    html_url: str | None = None
    url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    merged_at: str | None = None
    merged: bool | None = None
    state: str | None = None
    additions: int | None = None
    deletions: int | None = None
    changed_files: int | None = None
    base: BranchRef | None = None
    head: BranchRef | None = None
    user: GitHubUser | None = None


class PullRequestLink(msgspec.Struct, kw_only=True):
    """Marker present on issues that are really pull requests."""

    merged_at: str | None = None
    html_url: str | None = None


class Issue(msgspec.Struct, kw_only=True):
    """Issue object from ``issues`` deliveries and issue search results."""

    number: int
    id: int | None = None
    node_id: str | None = None
    title: str | None = None
    html_url: str | None = None
    url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    state: str | None = None
    user: GitHubUser | None = None
    pull_request: PullRequestLink | None = None


class Review(msgspec.Struct, kw_only=True):
    """Review object from ``pull_request_review`` deliveries."""

    id: int | None = None
    node_id: str | None = None
    html_url: str | None = None
    pull_request_url: str | None = None
    state: str | None = None
    body: str | None = None
    submitted_at: str | None = None
    user: GitHubUser | None = None


class ReviewedPullRequest(msgspec.Struct, kw_only=True):
    """Pull request summary attached to review deliveries."""

    number: int
    html_url: str | None = None
    updated_at: str | None = None


class Comment(msgspec.Struct, kw_only=True):
    """Comment object from ``issue_comment`` deliveries."""

    id: int | None = None
    node_id: str | None = None
    body: str | None = None
    html_url: str | None = None
    url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    user: GitHubUser | None = None


class CommitStats(msgspec.Struct, kw_only=True):
    """Line and file counts for a commit."""

    additions: int | None = None
    deletions: int | None = None
    total: int | None = None


class CommitDetail(msgspec.Struct, kw_only=True):
    """Git-level commit data nested in REST commit responses."""

    message: str | None = None
    author: GitHubUser | None = None
    committer: GitHubUser | None = None


class Commit(msgspec.Struct, kw_only=True):
    """Commit from a ``push`` delivery or the REST commits endpoint.

    Push deliveries use ``id``/``message``/``timestamp``; the REST endpoint
    nests message and dates under ``commit`` and reports the linked GitHub
    account in ``author``.
    """

    id: str | None = None
    sha: str | None = None
    node_id: str | None = None
    message: str | None = None
    timestamp: str | None = None
    url: str | None = None
    html_url: str | None = None
    author: GitHubUser | None = None
    committer: GitHubUser | None = None
    commit: CommitDetail | None = None
    stats: CommitStats | None = None
    files: list[dict[str, typ.Any]] | None = None


class PullRequestEvent(msgspec.Struct, kw_only=True):
    """``pull_request`` delivery."""

    action: str
    pull_request: PullRequest
    repository: GitHubRepository | None = None
    sender: GitHubUser | None = None


class PullRequestReviewEvent(msgspec.Struct, kw_only=True):
    """``pull_request_review`` delivery."""

    action: str
    review: Review
    pull_request: ReviewedPullRequest
    repository: GitHubRepository | None = None
    sender: GitHubUser | None = None


class IssuesEvent(msgspec.Struct, kw_only=True):
    """``issues`` delivery."""

    action: str
    issue: Issue
    repository: GitHubRepository | None = None
    sender: GitHubUser | None = None


class IssueCommentEvent(msgspec.Struct, kw_only=True):
    """``issue_comment`` delivery."""

    action: str
    comment: Comment
    issue: Issue
    repository: GitHubRepository | None = None
    sender: GitHubUser | None = None


class PushEvent(msgspec.Struct, kw_only=True):
    """``push`` delivery."""

    commits: list[Commit] = msgspec.field(default_factory=list)
    repository: GitHubRepository | None = None
    sender: GitHubUser | None = None
    ref: str | None = None


def decode_payload[T](payload: object, type_: type[T]) -> T:
    """Convert decoded JSON into ``type_``.

    Raises
    ------
    CanonicalFactPersistError
        When the payload does not match the expected shape.

    """
    try:
        return msgspec.convert(payload, type=type_, strict=False)
    except msgspec.ValidationError as exc:
        message = f"{type_.__name__} payload is malformed: {exc}"
        raise CanonicalFactPersistError.invalid_event(message) from exc
