"""Translate GitHub payloads into canonical event facts.

Each supported delivery kind, REST commit and issue-search result maps to at
most one :class:`CanonicalEvent` (pushes map to one per commit). Payloads
that lack an actor, a repository, a timestamp or a URL produce nothing, as
do unsupported actions.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import re
import typing as typ

from weir.common.time import parse_iso_datetime
from weir.logging import get_logger, log_debug
from weir.silver.hashing import compute_content_hash
from weir.silver.payloads import (
    Commit,
    GitHubRepository,
    GitHubUser,
    Issue,
    IssueCommentEvent,
    IssuesEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
    PushEvent,
    decode_payload,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

TEXT_LIMIT = 512
_REVIEW_SNIPPET = 160
_BODY_SNIPPET = 200
_SHORT_SHA = 7
_WHITESPACE = re.compile(r"\s+")


class EventType(enum.StrEnum):
    """Kinds of canonical fact."""

    PR_OPENED = "pr_opened"
    PR_CLOSED = "pr_closed"
    PR_MERGED = "pr_merged"
    REVIEW_SUBMITTED = "review_submitted"
    COMMIT = "commit"
    ISSUE_OPENED = "issue_opened"
    ISSUE_CLOSED = "issue_closed"
    ISSUE_COMMENT = "issue_comment"


@dc.dataclass(frozen=True, slots=True)
class CanonicalActor:
    """Normalised author of a fact."""

    login: str
    gh_id: int | None = None
    gh_node_id: str | None = None
    name: str | None = None
    avatar_url: str | None = None


@dc.dataclass(frozen=True, slots=True)
class CanonicalRepo:
    """Normalised repository a fact belongs to."""

    full_name: str
    gh_id: int | None = None
    gh_node_id: str | None = None
    owner: str | None = None
    name: str | None = None
    url: str | None = None
    default_branch: str | None = None
    visibility: str | None = None


@dc.dataclass(frozen=True, slots=True)
class CanonicalEvent:
    """A canonical fact ready for persistence."""

    type: EventType
    repo: CanonicalRepo
    actor: CanonicalActor
    occurred_at: dt.datetime
    canonical_text: str
    source_url: str
    metadata: dict[str, typ.Any] = dc.field(default_factory=dict)
    metrics: dict[str, int] | None = None
    gh_id: str | None = None
    gh_node_id: str | None = None

    @property
    def content_hash(self) -> str:
        """Return the idempotency key for this fact."""
        return compute_content_hash(
            self.type.value,
            gh_id=self.gh_id,
            source_url=self.source_url,
            metrics=self.metrics,
            canonical_text=self.canonical_text,
        )


def collapse_whitespace(value: str) -> str:
    """Collapse runs of whitespace to single spaces and strip the ends."""
    return _WHITESPACE.sub(" ", value).strip()


def truncate_text(value: str) -> str:
    """Limit ``value`` to ``TEXT_LIMIT`` characters with a trailing ellipsis."""
    if len(value) <= TEXT_LIMIT:
        return value
    return f"{value[: TEXT_LIMIT - 1]}…"


def _join(*parts: str | None) -> str:
    return truncate_text(" ".join(part for part in parts if part and part.strip()))


def _snippet(value: str | None, limit: int | None = None) -> str | None:
    if not value:
        return None
    collapsed = collapse_whitespace(value)
    if limit is not None:
        collapsed = collapsed[:limit]
    return f"– {collapsed}" if collapsed else None


def _compact(**values: object) -> dict[str, typ.Any]:
    return {key: value for key, value in values.items() if value is not None}


def _timestamp(*candidates: str | None) -> dt.datetime | None:
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return parse_iso_datetime(candidate)
        except ValueError:
            log_debug(logger, "Skipping unparseable timestamp %r", candidate)
    return None


def _metrics(
    additions: int | None, deletions: int | None, files_changed: int | None
) -> dict[str, int] | None:
    metrics = _compact(
        additions=additions, deletions=deletions, files_changed=files_changed
    )
    return metrics or None


def _format_metrics(metrics: dict[str, int] | None) -> str | None:
    if not metrics:
        return None
    parts: list[str] = []
    if "additions" in metrics:
        parts.append(f"+{metrics['additions']}")
    if "deletions" in metrics:
        parts.append(f"-{metrics['deletions']}")
    if "files_changed" in metrics:
        parts.append(f"{metrics['files_changed']} files")
    return f"({', '.join(parts)})"


def _str_id(value: int | None) -> str | None:
    return str(value) if value is not None else None


def normalize_actor(user: GitHubUser | None) -> CanonicalActor | None:
    """Resolve a login from ``login``, ``username``, ``name`` or e-mail."""
    if user is None:
        return None
    name = user.name.strip() if user.name else None
    email_local = user.email.split("@", 1)[0] if user.email else None
    login = user.login or user.username or name or email_local
    if not login:
        return None
    return CanonicalActor(
        login=login,
        gh_id=user.id,
        gh_node_id=user.node_id,
        name=user.name,
        avatar_url=user.avatar_url,
    )


def normalize_repository(repo: GitHubRepository | None) -> CanonicalRepo | None:
    """Resolve ``full_name`` directly or from ``owner.login`` and ``name``."""
    if repo is None:
        return None
    owner = repo.owner.login if repo.owner is not None else None
    full_name = repo.full_name or (f"{owner}/{repo.name}" if owner and repo.name else None)
    if not full_name:
        return None
    return CanonicalRepo(
        full_name=full_name,
        gh_id=repo.id,
        gh_node_id=repo.node_id,
        owner=owner or full_name.split("/", 1)[0],
        name=repo.name or full_name.split("/", 1)[-1],
        url=repo.html_url,
        default_branch=repo.default_branch,
        visibility=repo.visibility,
    )


def repository_from_payload(payload: object) -> CanonicalRepo | None:
    """Normalise a REST repository response or webhook ``repository`` block."""
    if not isinstance(payload, dict):
        return None
    return normalize_repository(decode_payload(payload, GitHubRepository))


def _pull_request_type(action: str, *, merged: bool) -> EventType | None:
    if action in {"opened", "reopened", "ready_for_review"}:
        return EventType.PR_OPENED
    if action == "closed":
        return EventType.PR_MERGED if merged else EventType.PR_CLOSED
    return None


def canonicalize_pull_request(payload: PullRequestEvent) -> CanonicalEvent | None:
    """Map opened, reopened, ready and closed pull request actions."""
    pr = payload.pull_request
    repo = normalize_repository(payload.repository)
    actor = normalize_actor(payload.sender or pr.user)
    event_type = _pull_request_type(payload.action, merged=bool(pr.merged))
    if repo is None or actor is None or event_type is None:
        return None

    match event_type:
        case EventType.PR_OPENED:
            occurred_at = _timestamp(pr.created_at, pr.updated_at)
            verb = "opened"
        case EventType.PR_MERGED:
            occurred_at = _timestamp(pr.merged_at, pr.closed_at, pr.updated_at)
            verb = "merged"
        case _:
            occurred_at = _timestamp(pr.closed_at, pr.updated_at)
            verb = "closed"

    source_url = pr.html_url or pr.url or repo.url
    if occurred_at is None or not source_url:
        return None

    metrics = _metrics(pr.additions, pr.deletions, pr.changed_files)
    return CanonicalEvent(
        type=event_type,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"PR #{pr.number}",
            _snippet(pr.title),
            f"{verb} by {actor.login}",
            _format_metrics(metrics),
        ),
        source_url=source_url,
        metrics=metrics,
        metadata=_compact(
            number=pr.number,
            title=pr.title,
            merged=pr.merged,
            state=pr.state,
            base_branch=pr.base.ref if pr.base else None,
            head_branch=pr.head.ref if pr.head else None,
        ),
        gh_id=_str_id(pr.id),
        gh_node_id=pr.node_id,
    )


def canonicalize_review(payload: PullRequestReviewEvent) -> CanonicalEvent | None:
    """Map submitted reviews; other review actions are ignored."""
    if payload.action != "submitted":
        return None
    review = payload.review
    repo = normalize_repository(payload.repository)
    actor = normalize_actor(review.user)
    if repo is None or actor is None:
        return None

    occurred_at = _timestamp(review.submitted_at, payload.pull_request.updated_at)
    source_url = (
        review.html_url
        or review.pull_request_url
        or payload.pull_request.html_url
        or repo.url
    )
    if occurred_at is None or not source_url:
        return None

    return CanonicalEvent(
        type=EventType.REVIEW_SUBMITTED,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"Review on PR #{payload.pull_request.number}",
            f"by {actor.login}",
            f"[{review.state}]" if review.state else None,
            _snippet(review.body, _REVIEW_SNIPPET),
        ),
        source_url=source_url,
        metadata=_compact(
            pr_number=payload.pull_request.number,
            review_id=review.id,
            state=review.state,
        ),
        gh_id=_str_id(review.id),
        gh_node_id=review.node_id,
    )


def canonicalize_issue(payload: IssuesEvent) -> CanonicalEvent | None:
    """Map opened, reopened and closed issue actions."""
    issue = payload.issue
    repo = normalize_repository(payload.repository)
    actor = normalize_actor(payload.sender or issue.user)
    if payload.action in {"opened", "reopened"}:
        event_type = EventType.ISSUE_OPENED
        occurred_at = _timestamp(issue.created_at, issue.updated_at)
    elif payload.action == "closed":
        event_type = EventType.ISSUE_CLOSED
        occurred_at = _timestamp(issue.closed_at, issue.updated_at)
    else:
        return None

    source_url = issue.html_url or issue.url or (repo.url if repo else None)
    if repo is None or actor is None or occurred_at is None or not source_url:
        return None

    verb = "opened" if event_type is EventType.ISSUE_OPENED else "closed"
    return CanonicalEvent(
        type=event_type,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"Issue #{issue.number}",
            _snippet(issue.title),
            f"{verb} by {actor.login}",
        ),
        source_url=source_url,
        metadata=_compact(
            issue_number=issue.number,
            is_pull_request=issue.pull_request is not None,
            state=issue.state,
        ),
        gh_id=_str_id(issue.id),
        gh_node_id=issue.node_id,
    )


def canonicalize_issue_comment(payload: IssueCommentEvent) -> CanonicalEvent | None:
    """Map created and edited comments on issues and pull requests."""
    if payload.action not in {"created", "edited"}:
        return None
    comment = payload.comment
    repo = normalize_repository(payload.repository)
    actor = normalize_actor(comment.user or payload.sender)
    if repo is None or actor is None:
        return None

    occurred_at = _timestamp(comment.updated_at, comment.created_at)
    source_url = comment.html_url or comment.url or repo.url
    if occurred_at is None or not source_url:
        return None

    target = "pull request" if payload.issue.pull_request is not None else "issue"
    return CanonicalEvent(
        type=EventType.ISSUE_COMMENT,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"Comment on {target} #{payload.issue.number}",
            f"by {actor.login}",
            _snippet(comment.body, _BODY_SNIPPET),
        ),
        source_url=source_url,
        metadata=_compact(
            issue_number=payload.issue.number,
            is_pull_request=payload.issue.pull_request is not None,
            comment_id=comment.id,
        ),
        gh_id=_str_id(comment.id),
        gh_node_id=comment.node_id,
    )


def _commit_actor(commit: Commit, sender: GitHubUser | None) -> CanonicalActor | None:
    detail = commit.commit
    git_author = commit.author if commit.commit is None else None
    linked_account = commit.author if commit.commit is not None else None
    if sender is not None and git_author is not None and git_author.username == sender.login:
        return normalize_actor(sender)
    return normalize_actor(
        linked_account
        or git_author
        or commit.committer
        or (detail.author if detail is not None else None)
    )


def canonicalize_commit(
    commit: Commit,
    repo: CanonicalRepo,
    *,
    sender: GitHubUser | None = None,
) -> CanonicalEvent | None:
    """Map a pushed or REST-listed commit.

    ``sender`` is the account that performed a push; commits authored under
    that account's username are attributed to it so the actor carries a
    GitHub id.
    """
    actor = _commit_actor(commit, sender)
    if actor is None:
        return None

    detail = commit.commit
    message = commit.message or (detail.message if detail is not None else None)
    occurred_at = _timestamp(
        commit.timestamp,
        detail.author.date if detail is not None and detail.author else None,
        detail.committer.date if detail is not None and detail.committer else None,
        commit.author.date if commit.author else None,
    )
    source_url = commit.html_url or commit.url or repo.url
    if occurred_at is None or not source_url:
        return None

    sha = commit.sha or commit.id
    stats = commit.stats
    metrics = _metrics(
        stats.additions if stats else None,
        stats.deletions if stats else None,
        len(commit.files) if commit.files is not None else None,
    )
    return CanonicalEvent(
        type=EventType.COMMIT,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"Commit {sha[:_SHORT_SHA]}" if sha else "Commit",
            f"by {actor.login}",
            _snippet(message, _BODY_SNIPPET),
            _format_metrics(metrics),
        ),
        source_url=source_url,
        metrics=metrics,
        metadata=_compact(sha=sha, message=message),
        gh_id=sha,
        gh_node_id=commit.node_id,
    )


def canonicalize_push(payload: PushEvent) -> list[CanonicalEvent]:
    """Map every commit in a push delivery."""
    repo = normalize_repository(payload.repository)
    if repo is None:
        return []
    events = (
        canonicalize_commit(commit, repo, sender=payload.sender)
        for commit in payload.commits
    )
    return [event for event in events if event is not None]


def canonicalize_timeline_item(
    item: dict[str, typ.Any], repo: CanonicalRepo
) -> CanonicalEvent | None:
    """Map an issue-search result recorded during backfill.

    Open items record an ``opened`` fact; closed pull requests record a
    merge when GitHub reports ``merged_at``.
    """
    issue = decode_payload(item, Issue)
    actor = normalize_actor(issue.user)
    if actor is None:
        return None

    is_pr = issue.pull_request is not None
    closed = (issue.state or "").lower() == "closed"
    merged_at = issue.pull_request.merged_at if issue.pull_request else None
    if is_pr:
        if not closed:
            event_type = EventType.PR_OPENED
        elif merged_at:
            event_type = EventType.PR_MERGED
        else:
            event_type = EventType.PR_CLOSED
    else:
        event_type = EventType.ISSUE_CLOSED if closed else EventType.ISSUE_OPENED

    if closed:
        occurred_at = _timestamp(merged_at, issue.closed_at, issue.updated_at)
    else:
        occurred_at = _timestamp(issue.created_at, issue.updated_at)
    source_url = issue.html_url or issue.url
    if occurred_at is None or not source_url:
        return None

    verb = {
        EventType.PR_OPENED: "opened",
        EventType.PR_MERGED: "merged",
        EventType.ISSUE_OPENED: "opened",
    }.get(event_type, "closed")
    return CanonicalEvent(
        type=event_type,
        repo=repo,
        actor=actor,
        occurred_at=occurred_at,
        canonical_text=_join(
            f"{'PR' if is_pr else 'Issue'} #{issue.number}",
            _snippet(issue.title),
            f"{verb} by {actor.login}",
        ),
        source_url=source_url,
        metadata=_compact(
            number=issue.number,
            state=issue.state,
            is_pull_request=is_pr,
            timeline=True,
        ),
        gh_id=_str_id(issue.id),
        gh_node_id=issue.node_id,
    )


def canonicalize_webhook(event: str, payload: dict[str, typ.Any]) -> list[CanonicalEvent]:
    """Return the canonical facts carried by one webhook delivery.

    Unsupported event kinds return an empty list.
    """
    match event:
        case "pull_request":
            single = canonicalize_pull_request(decode_payload(payload, PullRequestEvent))
        case "pull_request_review":
            single = canonicalize_review(decode_payload(payload, PullRequestReviewEvent))
        case "issues":
            single = canonicalize_issue(decode_payload(payload, IssuesEvent))
        case "issue_comment":
            single = canonicalize_issue_comment(
                decode_payload(payload, IssueCommentEvent)
            )
        case "push":
            return canonicalize_push(decode_payload(payload, PushEvent))
        case _:
            return []
    return [single] if single is not None else []


def canonicalize_commits(
    commits: cabc.Iterable[dict[str, typ.Any]], repo: CanonicalRepo
) -> list[CanonicalEvent]:
    """Map REST commit listings for ``repo``."""
    events = (
        canonicalize_commit(decode_payload(item, Commit), repo) for item in commits
    )
    return [event for event in events if event is not None]


SUPPORTED_WEBHOOK_EVENTS = frozenset(
    {"pull_request", "pull_request_review", "issues", "issue_comment", "push"}
)
