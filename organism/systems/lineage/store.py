"""
UTXO Organism — Lineage Persistence

File-backed storage for lineage traces and the local organism registry.

  <lineage.data_dir>/<origin[:16]>.json      one LineageTrace per lineage
  <lineage.registry_dir>/<spawn[:16]>.json   one SpawnRecord per spawned organism

Writes go to a temporary file and are moved into place with os.replace, so
a trace on disk is always either the previous or the new complete version.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from organism.primitives.common import short_id
from organism.systems.covenant.types import SpawnRecord
from organism.systems.lineage.types import LineageTrace

logger = structlog.get_logger("organism.lineage.store")


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class LineageStore:
    """Persists one trace file per lineage origin."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._logger = logger.bind(component="lineage_store", directory=str(self._dir))

    def path_for(self, origin: str) -> Path:
        return self._dir / f"{short_id(origin)}.json"

    def load(self, origin: str) -> LineageTrace | None:
        path = self.path_for(origin)
        if not path.exists():
            return None
        try:
            trace = LineageTrace.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            self._logger.warning("lineage_cache_unreadable", origin=origin, error=str(exc))
            return None
        if trace.origin != origin:
            self._logger.warning("lineage_cache_origin_mismatch", origin=origin, cached=trace.origin)
            return None
        return trace

    def save(self, trace: LineageTrace) -> Path:
        path = self.path_for(trace.origin)
        _atomic_write(path, trace.model_dump_json(indent=2))
        return path

    def delete(self, origin: str) -> bool:
        path = self.path_for(origin)
        if path.exists():
            path.unlink()
            return True
        return False


class OrganismRegistry:
    """Local record of organisms spawned from this installation."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._logger = logger.bind(component="organism_registry", directory=str(self._dir))

    def record(self, spawn: SpawnRecord) -> Path:
        path = self._dir / f"{short_id(spawn.spawn_txid)}.json"
        _atomic_write(path, spawn.model_dump_json(indent=2))
        self._logger.info("organism_registered", spawn_txid=spawn.spawn_txid, path=str(path))
        return path

    def list_spawns(self) -> list[SpawnRecord]:
        if not self._dir.exists():
            return []
        records: list[SpawnRecord] = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                records.append(SpawnRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as exc:
                self._logger.warning("registry_entry_unreadable", path=str(path), error=str(exc))
        return records
