"""Azure automation toolkit CLI (azt).

Usage:
    azt tags apply tags.yaml --dry-run        # Enforce a tag manifest
    azt tags copy --source ID --target ID     # Copy tags between scopes
    azt report unused --output unused.csv     # Unused NICs, disks, IPs, NSGs
    azt report missing-tags --tag owner       # Resources missing tags
    azt report storage --min-tls TLS1_2       # Public / weak-TLS storage
    azt synapse copy --source ws1 --target ws2
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import click
from azure.core.exceptions import AzureError

from .batch import (
    BatchTransferCache,
    BlobSink,
    FileSink,
    PartialFlushFailure,
    RowSink,
    StreamSink,
    is_blob_url,
)
from .catalog import UNUSED_REPORT_HEADER, CatalogError, ResourceCatalogBuilder
from .config import ConfigurationError, ToolkitConfig
from .diff import DiffConflict, ReconcilePolicy
from .logs import setup_logging
from .manifest import ManifestLoadError, load_manifest
from .operations import AsyncOperationError
from .resource_graph import (
    STORAGE_REPORT_HEADER,
    TAG_REPORT_HEADER,
    TLS_VERSION_ORDER,
    CatalogQuerier,
)
from .session import AzureSession, SessionError
from .synapse import (
    DEFAULT_KIND_ORDER,
    ArtifactCopier,
    ArtifactKind,
    CopyStatus,
    SynapseWorkspace,
    create_workspace_client,
)
from .tags import TagReconciler, TagSyncResult

logger = logging.getLogger(__name__)

TOOLKIT_ERRORS: tuple[type[Exception], ...] = (
    AsyncOperationError,
    CatalogError,
    ConfigurationError,
    DiffConflict,
    ManifestLoadError,
    PartialFlushFailure,
    SessionError,
    ValueError,
)

POLICY_CHOICES = [policy.value for policy in ReconcilePolicy]
KIND_CHOICES = [kind.value for kind in ArtifactKind]


@dataclass
class CliContext:
    """State shared by all commands of one invocation."""

    config: ToolkitConfig
    session: AzureSession | None = None

    def get_session(self) -> AzureSession:
        if self.session is None:
            self.session = build_session(self.config)
        return self.session


def build_session(config: ToolkitConfig) -> AzureSession:
    """Create and verify the session for this invocation."""
    session = AzureSession.from_config(config)
    session.verify()
    return session


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn toolkit and Azure errors into a clean CLI failure."""
    try:
        yield
    except TOOLKIT_ERRORS as e:
        raise click.ClickException(str(e)) from e
    except AzureError as e:
        logger.error("Azure error", extra={"error": str(e), "error_type": type(e).__name__})
        raise click.ClickException(f"Azure request failed: {e}") from e


def open_sink(destination: str | None, session: AzureSession | None) -> RowSink:
    """Pick a sink for ``--output``: stdout, a blob URL or a local path."""
    if destination is None or destination == "-":
        return StreamSink(click.get_text_stream("stdout"), name="<stdout>")
    if is_blob_url(destination):
        if session is None:
            raise ValueError("Blob output requires an Azure session")
        return BlobSink.from_url(destination, session.credential)
    return FileSink(Path(destination))


def export_rows(
    rows: Iterable[Sequence[Any]],
    header: Sequence[str],
    destination: str | None,
    ctx_obj: CliContext,
) -> int:
    """Stream rows through a BatchTransferCache; returns the row count."""
    sink = open_sink(destination, ctx_obj.session)
    count = 0
    with BatchTransferCache(sink, header=header, batch_size=ctx_obj.config.batch_size) as cache:
        for row in rows:
            cache.append(row)
            cache.maybe_flush()
            count += 1
    return count


def _report_done(count: int, destination: str | None, what: str) -> None:
    if destination not in (None, "-"):
        click.echo(f"Wrote {count} {what} to {destination}", err=True)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="azt")
@click.option("--subscription", help="Subscription ID (overrides AZURE_SUBSCRIPTION_ID).")
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"]),
    default="text",
    show_default=True,
    help="Log output format (logs go to stderr).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, subscription: str | None, log_format: str, verbose: bool) -> None:
    """Azure automation toolkit (azt).

    Uses the Azure session you are already logged in to (az login).

    \b
    Quick Start:
        azt tags apply tags.yaml --dry-run
        azt report unused
    """
    setup_logging(log_format, verbose)
    with handle_errors():
        config = ToolkitConfig.from_env()
        if subscription:
            config = replace(config, subscription_id=subscription)
    ctx.obj = CliContext(config=config)


# =============================================================================
# Tag Commands
# =============================================================================


@cli.group()
def tags() -> None:
    """Tag commands: apply a manifest, copy tags between scopes."""
    pass


def _echo_tag_result(result: TagSyncResult) -> None:
    counts = result.counts
    summary = (
        f"missing={counts.get('Removed', 0)} "
        f"differing={counts.get('Modified', 0)} "
        f"extra={counts.get('Added', 0)}"
    )
    if not result.changed:
        state = "in sync"
    elif result.dry_run:
        state = "would update"
    else:
        state = "updated"
    click.echo(f"{result.scope}: {state} ({summary})")


@tags.command("apply")
@click.argument("manifest_path", type=click.Path(path_type=Path))
@click.option("--dry-run", is_flag=True, help="Show changes without writing tags.")
@click.pass_obj
def tags_apply(obj: CliContext, manifest_path: Path, dry_run: bool) -> None:
    """Converge the scopes of a YAML manifest to its tags."""
    with handle_errors():
        manifest = load_manifest(manifest_path)
        session = obj.get_session()
        reconciler = TagReconciler(session.resource_client(), session.poller())
        for result in reconciler.apply_manifest(manifest, dry_run=dry_run):
            _echo_tag_result(result)


@tags.command("copy")
@click.option("--source", required=True, help="Scope to read tags from.")
@click.option("--target", required=True, help="Scope to write tags to.")
@click.option(
    "--policy",
    type=click.Choice(POLICY_CHOICES),
    default=ReconcilePolicy.FILL_MISSING.value,
    show_default=True,
)
@click.option("--dry-run", is_flag=True, help="Show changes without writing tags.")
@click.pass_obj
def tags_copy(obj: CliContext, source: str, target: str, policy: str, dry_run: bool) -> None:
    """Copy the tags of one scope onto another."""
    with handle_errors():
        session = obj.get_session()
        reconciler = TagReconciler(session.resource_client(), session.poller())
        result = reconciler.copy_tags(source, target, ReconcilePolicy(policy), dry_run=dry_run)
        _echo_tag_result(result)


# =============================================================================
# Report Commands
# =============================================================================


@cli.group()
def report() -> None:
    """Audit reports exported as CSV (stdout, file or blob URL)."""
    pass


@report.command("unused")
@click.option("--output", "-o", help="File path or blob URL (default: stdout).")
@click.pass_obj
def report_unused(obj: CliContext, output: str | None) -> None:
    """Unattached NICs, disks and public IPs, and unused NSGs."""
    with handle_errors():
        session = obj.get_session()
        catalog = CatalogQuerier(session.credential, obj.config).load_catalog()
        unused = ResourceCatalogBuilder(catalog).unused_resources()
        count = export_rows((r.as_row() for r in unused), UNUSED_REPORT_HEADER, output, obj)
    _report_done(count, output, "unused resources")


@report.command("missing-tags")
@click.option("--tag", "required", multiple=True, help="Required tag name (repeatable).")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(path_type=Path),
    help="Take required tags from a manifest's requiredTags.",
)
@click.option("--output", "-o", help="File path or blob URL (default: stdout).")
@click.pass_obj
def report_missing_tags(
    obj: CliContext, required: tuple[str, ...], manifest_path: Path | None, output: str | None
) -> None:
    """Resources lacking any of the required tags."""
    with handle_errors():
        required_tags = list(required)
        if manifest_path is not None:
            required_tags.extend(load_manifest(manifest_path).required_tags)
        if not required_tags:
            raise click.UsageError("Pass at least one --tag or a --manifest with requiredTags")

        session = obj.get_session()
        findings = CatalogQuerier(session.credential, obj.config).find_missing_tags(
            dict.fromkeys(required_tags)
        )
        count = export_rows((f.as_row() for f in findings), TAG_REPORT_HEADER, output, obj)
    _report_done(count, output, "resources")


@report.command("storage")
@click.option(
    "--min-tls",
    type=click.Choice(list(TLS_VERSION_ORDER)),
    default="TLS1_2",
    show_default=True,
)
@click.option("--output", "-o", help="File path or blob URL (default: stdout).")
@click.pass_obj
def report_storage(obj: CliContext, min_tls: str, output: str | None) -> None:
    """Storage accounts open to the public or accepting weak TLS."""
    with handle_errors():
        session = obj.get_session()
        querier = CatalogQuerier(session.credential, obj.config)
        findings = [*querier.find_public_storage(), *querier.find_weak_tls(min_tls)]
        count = export_rows((f.as_row() for f in findings), STORAGE_REPORT_HEADER, output, obj)
    _report_done(count, output, "findings")


# =============================================================================
# Synapse Commands
# =============================================================================


@cli.group()
def synapse() -> None:
    """Synapse workspace commands."""
    pass


@synapse.command("copy")
@click.option("--source", required=True, help="Source workspace name.")
@click.option("--target", required=True, help="Target workspace name.")
@click.option(
    "--kind",
    "kinds",
    type=click.Choice(KIND_CHOICES),
    multiple=True,
    help="Artifact kind to copy (repeatable, default: all in dependency order).",
)
@click.option("--name", "names", multiple=True, help="Only copy artifacts with this name.")
@click.option("--continue-on-error", is_flag=True, help="Keep going when an artifact fails.")
@click.pass_obj
def synapse_copy(
    obj: CliContext,
    source: str,
    target: str,
    kinds: tuple[str, ...],
    names: tuple[str, ...],
    continue_on_error: bool,
) -> None:
    """Copy artifacts from one workspace to another."""
    selected = [ArtifactKind(k) for k in kinds] if kinds else list(DEFAULT_KIND_ORDER)
    # Keep dependency order whatever order the options came in
    selected.sort(key=DEFAULT_KIND_ORDER.index)

    with handle_errors():
        session = obj.get_session()
        target_client = create_workspace_client(target, session.credential)
        copier = ArtifactCopier(
            SynapseWorkspace(source, create_workspace_client(source, session.credential)),
            SynapseWorkspace(target, target_client),
            session.poller(target_client),
        )
        results = copier.copy(selected, names or None, continue_on_error=continue_on_error)

    for result in results:
        line = f"{result.kind.value}/{result.name}: {result.status.value}"
        if result.error:
            line = f"{line} ({result.error})"
        click.echo(line)

    if any(r.status == CopyStatus.FAILED for r in results):
        raise click.ClickException("Some artifacts failed to copy")


def main() -> None:
    """Entry point for the azt CLI."""
    cli()


if __name__ == "__main__":
    main()
