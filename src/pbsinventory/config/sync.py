"""Synchronization defaults for inventory scans."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_int_env

DEFAULT_BATCH_SIZE = 1000
BATCH_SIZE_ENV = "PBSINVENTORY_BATCH_SIZE"
HOST_ID_ENV = "PBSINVENTORY_HOST_ID"


@dataclass(frozen=True, slots=True)
class SyncConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    host_id: int | None = None


def get_sync_config() -> SyncConfig:
    batch_size = optional_int_env(BATCH_SIZE_ENV, minimum=1)
    host_id = optional_int_env(HOST_ID_ENV, minimum=0)
    return SyncConfig(
        batch_size=batch_size if batch_size is not None else DEFAULT_BATCH_SIZE,
        host_id=host_id,
    )
