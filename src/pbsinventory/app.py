"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from pbsinventory.adapters.filesystem import LocalDiscoverySource
from pbsinventory.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyUnitOfWork,
    is_started,
    startup,
)
from pbsinventory.domain.paths import parse_chunk_listing, split_nul_list
from pbsinventory.domain.reconciliation.orchestrator import SyncReport, synchronize
from pbsinventory.domain.scan import build_scan

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pbsinventory.domain.ports.discovery import DiscoverySource
    from pbsinventory.domain.ports.unit_of_work import InventoryUnitOfWork

UnitOfWorkFactory = Callable[[], "InventoryUnitOfWork"]


log = getLogger(__name__)


def sync_datastores(
    mountpoints: Sequence[str],
    *,
    host_id: int,
    source: DiscoverySource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    include_chunks: bool = False,
    read_indices: bool = True,
    as_of: datetime | None = None,
) -> SyncReport:
    """Discover the given datastores of a host and reconcile them in one transaction."""

    effective_source = source or LocalDiscoverySource()
    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyUnitOfWork
    effective_as_of = as_of or datetime.now(tz=UTC)
    log.info(
        "Starting inventory sync: host=%s, datastores=%s, chunks=%s, indices=%s",
        host_id,
        ", ".join(mountpoints),
        include_chunks,
        read_indices,
    )

    index_paths: list[str] = []
    chunk_listing: list[tuple[str, int | None]] | None = [] if include_chunks else None
    for mountpoint in mountpoints:
        index_paths.extend(split_nul_list(effective_source.list_index_files(mountpoint)))
        if chunk_listing is not None:
            chunk_listing.extend(
                parse_chunk_listing(effective_source.list_chunk_files(mountpoint))
            )
    index_blobs = (
        {path: effective_source.read_file(path) for path in index_paths} if read_indices else None
    )

    scan = build_scan(
        index_paths,
        mountpoints=mountpoints,
        chunk_listing=chunk_listing,
        index_blobs=index_blobs,
    )

    with unit_of_work_factory() as uow:
        report = synchronize(
            uow.store,
            scan,
            host_id=host_id,
            as_of=effective_as_of,
            mountpoints=mountpoints,
        )
        uow.commit()

    log.info(
        f"Finished inventory sync: {dict(sorted(report.levels.items()))}, "
        f"links +{report.links_inserted} ~{report.links_updated} -{report.links_removed}"
    )
    return report
