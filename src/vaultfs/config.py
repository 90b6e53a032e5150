"""VaultConfig: runtime settings for a ``VaultAsync`` instance."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

from vaultfs.models.principals import ADMIN_GROUP_NAME

_ENV_PREFIX = "VAULTFS_"


@dataclass(frozen=True)
class VaultConfig:
    """Settings with defaults suitable for a single-process deployment.

    Attributes:
        retention_days: Days a soft-deleted node stays in the trash before
            the Reaper may purge it.
        admin_group: Name of the administrative group.
        sweep_interval_seconds: Delay between Reaper cycles.
        blob_root: Directory for ``LocalDiskBlobStore``; ``None`` keeps
            blobs in memory.
    """

    retention_days: int = 7
    admin_group: str = ADMIN_GROUP_NAME
    sweep_interval_seconds: float = 86400
    blob_root: Path | None = None

    def __post_init__(self) -> None:
        if self.retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {self.retention_days}")
        if self.sweep_interval_seconds <= 0:
            raise ValueError(
                f"sweep_interval_seconds must be > 0, got {self.sweep_interval_seconds}"
            )
        if not self.admin_group:
            raise ValueError("admin_group must not be empty")

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> VaultConfig:
        """Build a config from ``VAULTFS_*`` variables.

        ``VAULTFS_RETENTION_DAYS``, ``VAULTFS_ADMIN_GROUP``,
        ``VAULTFS_SWEEP_INTERVAL_SECONDS`` and ``VAULTFS_BLOB_ROOT`` are
        read; keyword *overrides* take precedence over the environment.
        """
        env = os.environ if environ is None else environ
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown config fields: {sorted(unknown)}")

        values: dict[str, Any] = {}
        if (raw := env.get(f"{_ENV_PREFIX}RETENTION_DAYS")) is not None:
            values["retention_days"] = int(raw)
        if (raw := env.get(f"{_ENV_PREFIX}ADMIN_GROUP")) is not None:
            values["admin_group"] = raw
        if (raw := env.get(f"{_ENV_PREFIX}SWEEP_INTERVAL_SECONDS")) is not None:
            values["sweep_interval_seconds"] = float(raw)
        if raw := env.get(f"{_ENV_PREFIX}BLOB_ROOT"):
            values["blob_root"] = Path(raw)

        values.update(overrides)
        return cls(**values)
