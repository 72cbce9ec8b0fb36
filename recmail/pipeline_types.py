"""Typed containers shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import MalformedRecord


# Stored records may use either PascalCase names or snake_case.
_METRIC_ALIASES: Dict[str, str] = {
    "auc": "auc",
    "accuracy": "accuracy",
    "f1score": "f1_score",
    "f1_score": "f1_score",
    "precision": "precision",
    "recall": "recall",
    "rsquared": "r_squared",
    "r_squared": "r_squared",
    "rmse": "rmse",
    "meanabsoluteerror": "mean_absolute_error",
    "mean_absolute_error": "mean_absolute_error",
    "meansquarederror": "mean_squared_error",
    "mean_squared_error": "mean_squared_error",
    "lossfunction": "loss_function",
    "loss_function": "loss_function",
    "logloss": "log_loss",
    "log_loss": "log_loss",
    "loglossreduction": "log_loss_reduction",
    "log_loss_reduction": "log_loss_reduction",
    "macroaccuracy": "macro_accuracy",
    "macro_accuracy": "macro_accuracy",
    "microaccuracy": "micro_accuracy",
    "micro_accuracy": "micro_accuracy",
}


def _fmt4(value: float) -> str:
    """Up to four decimals, trailing zeros trimmed."""
    return f"{value:.4f}".rstrip("0").rstrip(".")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as e:
            raise MalformedRecord(f"Unparseable training timestamp: {value!r}") from e
    else:
        raise MalformedRecord("Evaluation record has no training timestamp")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _coerce_metric(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


@dataclass(frozen=True)
class EvaluationRecord:
    """
    One trained model's identity plus whatever metrics apply to its model type.

    ``trained_at`` is always set; no individual metric is guaranteed.
    """

    model_name: str
    file_name: str
    trained_at: datetime
    metrics: Dict[str, float] = field(default_factory=dict)
    binary: Optional[bool] = None
    id: Optional[str] = None

    def metric(self, name: str) -> Optional[float]:
        return self.metrics.get(name)

    def summary(self) -> str:
        parts: List[str] = []
        if self.metric("auc") is not None:
            parts.append(f"AUC = {_fmt4(self.metrics['auc'])}")
        if self.metric("r_squared") is not None:
            parts.append(f"R² = {_fmt4(self.metrics['r_squared'])}")
        if self.metric("rmse") is not None:
            parts.append(f"RMSE = {_fmt4(self.metrics['rmse'])}")
        # round-trip form with seven fractional digits, e.g. 2024-01-01T00:00:00.0000000Z
        at = self.trained_at.astimezone(timezone.utc)
        parts.append(f"At = {at.strftime('%Y-%m-%dT%H:%M:%S.%f0Z')}")
        return ", ".join(parts)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EvaluationRecord":
        """
        Parse a stored evaluation record.

        Metric keys are matched case-insensitively against known names; a nested
        ``Multiclass`` / ``multiclass`` block contributes its macro/micro accuracy
        and log-loss figures. Unknown or non-numeric metrics are dropped.
        """
        lowered = {str(k).lower(): v for k, v in raw.items()}

        model_name = str(lowered.get("modelname") or lowered.get("model_name") or "").strip()
        file_name = str(lowered.get("filename") or lowered.get("file_name") or "").strip()
        if not file_name:
            raise MalformedRecord("Evaluation record has no model file name")

        trained_raw = lowered.get("trainedatutc", lowered.get("trained_at"))
        trained_at = _parse_timestamp(trained_raw)

        metrics: Dict[str, float] = {}
        sources: List[Mapping[str, Any]] = [lowered]
        nested = lowered.get("multiclass")
        if isinstance(nested, Mapping):
            sources.append({str(k).lower(): v for k, v in nested.items()})
        for src in sources:
            for key, value in src.items():
                canon = _METRIC_ALIASES.get(key)
                if canon is None or canon in metrics:
                    continue
                coerced = _coerce_metric(value)
                if coerced is not None:
                    metrics[canon] = coerced

        binary = lowered.get("binary")
        rec_id = lowered.get("id")
        return cls(
            model_name=model_name or file_name,
            file_name=file_name,
            trained_at=trained_at,
            metrics=metrics,
            binary=bool(binary) if binary is not None else None,
            id=str(rec_id) if rec_id is not None else None,
        )


@dataclass(frozen=True)
class RankedCandidate:
    """An evaluation record with the scalar score the selector ranked it by."""

    record: EvaluationRecord
    score: float

    @property
    def file_name(self) -> str:
        return self.record.file_name


@dataclass(frozen=True)
class Recipient:
    email: str
    customer_id: int
    first_name: str = ""
    last_name: str = ""
    segment: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class ScoringRow:
    """One (recipient, product) pair submitted to the scoring model."""

    email: str
    customer_id: int
    sku: int


@dataclass(frozen=True)
class ScoredRow:
    email: str
    customer_id: int
    sku: int
    score: float


@dataclass(frozen=True)
class RecommendationEntry:
    sku: int
    score: float


class RecipientRecommendations(Mapping[str, List[RecommendationEntry]]):
    """
    Read-only mapping from recipient email to that recipient's top-N entries.

    Keys compare case-insensitively; ``keys()`` yields the first spelling seen.
    """

    def __init__(self, items: Iterable[Tuple[str, List[RecommendationEntry]]] = ()):
        self._data: Dict[str, List[RecommendationEntry]] = {}
        self._original: Dict[str, str] = {}
        for email, entries in items:
            key = email.casefold()
            if key not in self._original:
                self._original[key] = email
            self._data[key] = list(entries)

    def __getitem__(self, email: str) -> List[RecommendationEntry]:
        if not isinstance(email, str):
            raise KeyError(email)
        return self._data[email.casefold()]

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and email.casefold() in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._original.values())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RecipientRecommendations({dict(zip(self._original.values(), self._data.values()))!r})"
