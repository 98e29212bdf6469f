"""Catalog snapshots and unused-resource classification.

A catalog is built fresh from one listing pass and is read-only afterwards.
Each entry carries an explicit map from reference-field name to the ids it
points at (a NIC's ``virtualMachine``, an NSG's ``networkInterfaces``...),
so classification never has to look fields up by reflection.

The "transitively unused" check is one level deep: an NSG is unused when
none of its NICs is attached to a VM. It is not a graph walk.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Resource kinds the catalog understands."""

    VIRTUAL_MACHINE = "microsoft.compute/virtualmachines"
    DISK = "microsoft.compute/disks"
    NETWORK_INTERFACE = "microsoft.network/networkinterfaces"
    NETWORK_SECURITY_GROUP = "microsoft.network/networksecuritygroups"
    PUBLIC_IP = "microsoft.network/publicipaddresses"
    SUBNET = "microsoft.network/virtualnetworks/subnets"
    # Referenced by an enumerated resource but not enumerated itself
    EXTERNAL = "external"


class CatalogError(Exception):
    """Raised when a catalog snapshot violates its invariants."""

    pass


@dataclass(frozen=True)
class CatalogEntry:
    """A resource and the ids it references.

    Attributes:
        id: Lower-cased ARM resource ID, unique within the snapshot.
        kind: Resource type.
        name: Resource name.
        references: Reference-field name to referenced ids.
        resource_group: Resource group name, for reporting.
    """

    id: str
    kind: ResourceKind
    name: str
    references: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    resource_group: str = ""

    @property
    def attachments(self) -> tuple[str, ...]:
        """All referenced ids, in field order, without duplicates."""
        seen: dict[str, None] = {}
        for ids in self.references.values():
            for ref in ids:
                seen.setdefault(ref, None)
        return tuple(seen)

    def field_refs(self, attachment_field: str) -> tuple[str, ...]:
        return self.references.get(attachment_field, ())


class Catalog:
    """Ordered, read-only snapshot of catalog entries.

    Invariant: ids are unique and every attachment points at an entry of
    this snapshot. With ``strict=False`` dangling references are dropped
    (and logged) instead of raising.
    """

    def __init__(self, entries: Iterable[CatalogEntry], strict: bool = True) -> None:
        ordered: dict[str, CatalogEntry] = {}
        for entry in entries:
            if entry.id in ordered:
                raise CatalogError(f"Duplicate catalog id: {entry.id}")
            ordered[entry.id] = entry

        dangling = 0
        for entry_id, entry in list(ordered.items()):
            pruned: dict[str, tuple[str, ...]] = {}
            for name, ids in entry.references.items():
                kept = tuple(ref for ref in ids if ref in ordered)
                if len(kept) != len(ids):
                    missing = [ref for ref in ids if ref not in ordered]
                    if strict:
                        raise CatalogError(
                            f"{entry_id} references ids outside this snapshot: {missing}"
                        )
                    dangling += len(missing)
                pruned[name] = kept
            if pruned != dict(entry.references):
                ordered[entry_id] = CatalogEntry(
                    id=entry.id,
                    kind=entry.kind,
                    name=entry.name,
                    references=pruned,
                    resource_group=entry.resource_group,
                )

        if dangling:
            logger.warning(
                "Dropped references to resources outside the catalog",
                extra={"dangling_references": dangling},
            )

        self._entries = ordered

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def get(self, entry_id: str) -> CatalogEntry | None:
        return self._entries.get(entry_id)

    def of_kind(self, kind: ResourceKind) -> list[CatalogEntry]:
        return [entry for entry in self._entries.values() if entry.kind == kind]


def find_unattached(
    entries: Iterable[CatalogEntry], attachment_field: str
) -> list[CatalogEntry]:
    """Return entries whose ``attachment_field`` references nothing."""
    return [entry for entry in entries if not entry.field_refs(attachment_field)]


def find_transitively_unused(
    entries: Iterable[CatalogEntry],
    attached_to_set: set[str] | frozenset[str],
    attachment_field: str | None = None,
) -> list[CatalogEntry]:
    """Return entries none of whose attachments is in ``attached_to_set``.

    Args:
        entries: Candidates, e.g. NSGs.
        attached_to_set: Ids considered "in use", e.g. NICs attached to a VM.
        attachment_field: Restrict the check to one reference field.
    """
    unused = []
    for entry in entries:
        refs = entry.attachments if attachment_field is None else entry.field_refs(attachment_field)
        if not any(ref in attached_to_set for ref in refs):
            unused.append(entry)
    return unused


@dataclass(frozen=True)
class UnusedResource:
    """A resource flagged by the unused-resources report."""

    id: str
    kind: ResourceKind
    name: str
    resource_group: str
    reason: str

    def as_row(self) -> tuple[str, str, str, str, str]:
        return (self.kind.value, self.name, self.resource_group, self.id, self.reason)


UNUSED_REPORT_HEADER = ("kind", "name", "resourceGroup", "id", "reason")


class ResourceCatalogBuilder:
    """Classifies catalog entries as unused or orphaned."""

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    def unattached_network_interfaces(self) -> list[CatalogEntry]:
        return find_unattached(
            self._catalog.of_kind(ResourceKind.NETWORK_INTERFACE), "virtualMachine"
        )

    def unattached_disks(self) -> list[CatalogEntry]:
        return find_unattached(self._catalog.of_kind(ResourceKind.DISK), "managedBy")

    def unassociated_public_ips(self) -> list[CatalogEntry]:
        return [
            entry
            for entry in self._catalog.of_kind(ResourceKind.PUBLIC_IP)
            if not entry.field_refs("ipConfiguration") and not entry.field_refs("natGateway")
        ]

    def unused_network_security_groups(self) -> list[CatalogEntry]:
        """NSGs on no subnet whose NICs are all detached from VMs."""
        nics_in_use = {
            entry.id
            for entry in self._catalog.of_kind(ResourceKind.NETWORK_INTERFACE)
            if entry.field_refs("virtualMachine")
        }
        not_on_subnet = find_unattached(
            self._catalog.of_kind(ResourceKind.NETWORK_SECURITY_GROUP), "subnets"
        )
        return find_transitively_unused(not_on_subnet, nics_in_use, "networkInterfaces")

    def unused_resources(self) -> list[UnusedResource]:
        """Run every check; results keep catalog order within each check."""
        findings: list[tuple[list[CatalogEntry], str]] = [
            (self.unattached_network_interfaces(), "Not attached to a virtual machine"),
            (self.unattached_disks(), "Not attached to a virtual machine"),
            (self.unassociated_public_ips(), "Not associated with an IP configuration"),
            (
                self.unused_network_security_groups(),
                "No subnet and no network interface attached to a virtual machine",
            ),
        ]

        report = [
            UnusedResource(
                id=entry.id,
                kind=entry.kind,
                name=entry.name,
                resource_group=entry.resource_group,
                reason=reason,
            )
            for entries, reason in findings
            for entry in entries
        ]

        logger.info(
            "Unused resource scan complete",
            extra={"catalog_size": len(self._catalog), "unused_count": len(report)},
        )
        return report
