from __future__ import annotations

"""
Read-only access to stored model evaluations and model blobs.

The store is prefix-scoped: evaluation records are JSON documents living
under ``<root>/<prefix>`` and model blobs are addressed by a ``/``-separated
key relative to ``<root>``.  Discovery is deliberately forgiving (an absent
prefix or an unreadable record just means fewer candidates) while blob reads
are strict, since a selected model that cannot be read is fatal for the run.
"""

import json
from pathlib import Path
from typing import List, Protocol

from loguru import logger

from .errors import DataSourceUnavailable, MalformedRecord
from .pipeline_types import EvaluationRecord


class MetricStore(Protocol):
    def get_recent(self, limit: int, prefix: str) -> List[EvaluationRecord]:
        ...

    def read_bytes(self, key: str) -> bytes:
        ...


class LocalMetricStore:
    """
    Filesystem-backed object store.

    Layout::

        root/
          models/
            churn-2024-05-01.json   # evaluation record
            churn-2024-05-01.pkl    # model blob referenced by FileName
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key.lstrip("/")).resolve()
        if path != root and root not in path.parents:
            raise DataSourceUnavailable(f"Key escapes store root: {key!r}")
        return path

    def get_recent(self, limit: int, prefix: str) -> List[EvaluationRecord]:
        """
        Return up to ``limit`` evaluation records under ``prefix``, newest first.
        """
        if limit <= 0:
            return []

        try:
            base = self._resolve(prefix)
        except DataSourceUnavailable as e:
            logger.warning("Metric store prefix rejected: {}", e)
            return []

        if not base.is_dir():
            logger.warning("Metric store prefix {} not found under {}", prefix, self.root)
            return []

        records: List[EvaluationRecord] = []
        try:
            paths = sorted(base.rglob("*.json"))
        except OSError as e:
            logger.warning("Failed to list metric records under {}: {}", base, e)
            return []

        for path in paths:
            try:
                with path.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
                records.append(EvaluationRecord.from_dict(raw))
            except (OSError, ValueError, MalformedRecord, AttributeError) as e:
                logger.warning("Skipping unreadable metric record {}: {}", path, e)

        records.sort(key=lambda r: r.trained_at, reverse=True)
        logger.info(
            "Loaded {} metric records under {} (keeping {})",
            len(records),
            prefix,
            min(limit, len(records)),
        )
        return records[:limit]

    def read_bytes(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.is_file():
            raise DataSourceUnavailable(f"No object stored at key {key!r}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise DataSourceUnavailable(f"Failed to read object {key!r}: {e}") from e
