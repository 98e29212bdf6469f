"""Tag reconciliation against the ARM tags resource.

Tags live on ``{scope}/providers/Microsoft.Resources/tags/default`` for
any resource, resource group or subscription scope. Reads are plain GETs;
writes go through the operation poller since the tags API may answer
asynchronously.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from azure.core.rest import HttpRequest

from .diff import DiffEntry, ReconcilePolicy, apply_policy, compute_diff, summarize
from .manifest import TagManifest
from .operations import AsyncOperationPoller, SupportsSendRequest

logger = logging.getLogger(__name__)

TAGS_API_VERSION = "2021-04-01"
TAGS_RESOURCE_SUFFIX = "/providers/Microsoft.Resources/tags/default"


def tags_url(scope: str) -> str:
    """URL of the tags resource for an ARM scope."""
    if not scope.startswith("/"):
        raise ValueError(f"Scope must be an ARM resource ID: {scope}")
    return f"{scope.rstrip('/')}{TAGS_RESOURCE_SUFFIX}?api-version={TAGS_API_VERSION}"


@dataclass
class TagSyncResult:
    """Outcome of reconciling tags on one scope.

    Attributes:
        scope: ARM scope the tags belong to.
        entries: Diff of desired (reference) against actual (current).
        before: Tags found on the scope.
        after: Tags the scope holds (or would hold, in dry-run) afterwards.
        applied: Whether a write was issued.
    """

    scope: str
    policy: ReconcilePolicy
    entries: list[DiffEntry]
    before: dict[str, str]
    after: dict[str, str]
    applied: bool = False
    dry_run: bool = False
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.before != self.after


class TagReconciler:
    """Reads tags and converges them to a desired set under a policy."""

    def __init__(self, client: SupportsSendRequest, poller: AsyncOperationPoller) -> None:
        self._client = client
        self._poller = poller

    def get_tags(self, scope: str, missing_ok: bool = True) -> dict[str, str]:
        """Return the tags on a scope.

        Args:
            scope: ARM scope.
            missing_ok: Read a 404 as "no tags". Pass False where an empty
                result would be applied elsewhere, e.g. a copy source.

        Raises:
            HttpResponseError: For any other error status, and for a 404
                when missing_ok is False.
        """
        response = self._client.send_request(HttpRequest("GET", tags_url(scope)))
        if response.status_code == 404 and missing_ok:
            return {}
        response.raise_for_status()

        body: dict[str, Any] = response.json() or {}
        tags = (body.get("properties") or {}).get("tags") or {}
        return dict(tags)

    def reconcile(
        self,
        scope: str,
        desired: dict[str, str],
        policy: ReconcilePolicy = ReconcilePolicy.FILL_MISSING,
        dry_run: bool = False,
    ) -> TagSyncResult:
        """Converge the tags on ``scope`` towards ``desired``.

        No write is issued when the policy result equals the current tags.

        Raises:
            SubmissionError, PollError, OperationFailed: From the write.
        """
        current = self.get_tags(scope)
        entries = compute_diff(desired, current)
        target = apply_policy(desired, current, policy)

        result = TagSyncResult(
            scope=scope,
            policy=policy,
            entries=entries,
            before=current,
            after=target,
            dry_run=dry_run,
            counts={kind.value: count for kind, count in summarize(entries).items()},
        )

        if not result.changed:
            logger.info("Tags already in sync", extra={"scope": scope, "policy": policy.value})
            return result

        if dry_run:
            logger.info(
                "Dry run, tag changes not applied",
                extra={"scope": scope, "policy": policy.value, **result.counts},
            )
            return result

        self._poller.execute(tags_url(scope), {"properties": {"tags": target}})
        result.applied = True

        logger.info(
            "Tags reconciled",
            extra={"scope": scope, "policy": policy.value, **result.counts},
        )
        return result

    def copy_tags(
        self,
        source_scope: str,
        target_scope: str,
        policy: ReconcilePolicy = ReconcilePolicy.FILL_MISSING,
        dry_run: bool = False,
    ) -> TagSyncResult:
        """Copy the tags of one scope onto another.

        Raises:
            HttpResponseError: If the source scope cannot be read, including
                when it does not exist.
        """
        source_tags = self.get_tags(source_scope, missing_ok=False)
        logger.info(
            "Copying tags",
            extra={
                "source": source_scope,
                "target": target_scope,
                "tag_count": len(source_tags),
            },
        )
        return self.reconcile(target_scope, source_tags, policy, dry_run)

    def apply_manifest(self, manifest: TagManifest, dry_run: bool = False) -> list[TagSyncResult]:
        """Reconcile every scope listed in a manifest."""
        return [
            self.reconcile(scope, manifest.tags, manifest.policy, dry_run)
            for scope in manifest.scopes
        ]
