from __future__ import annotations

"""
Best-model selection over recent evaluation records.

Each record is reduced to one comparable score:

* the first present metric from ``HIGHER_IS_BETTER_METRICS`` (AUC, accuracy,
  macro accuracy, F1, R²), taken as-is;
* otherwise the first present error metric from ``LOWER_IS_BETTER_METRICS``
  mapped into (0, 1] via ``1 / (1 + err)``.

Records with neither are not candidates.  Ties prefer the more recently
trained model, then the lexicographically smaller file name, so the winner
does not depend on input order.
"""

from typing import Iterable, List, Optional

from loguru import logger

from .config import HIGHER_IS_BETTER_METRICS, LOWER_IS_BETTER_METRICS
from .pipeline_types import EvaluationRecord, RankedCandidate


def score_record(record: EvaluationRecord) -> Optional[float]:
    """
    Scalar ranking score for a record, or None if no metric is usable.

    Usable metrics are the higher-is-better ones (AUC, accuracy, macro accuracy,
    F1, R²) taken as-is, then RMSE and MAE mapped to 1 / (1 + error).  A record
    carrying only precision, recall or log-loss scores None and is never a
    candidate.
    """
    for name in HIGHER_IS_BETTER_METRICS:
        value = record.metric(name)
        if value is not None:
            return float(value)

    for name in LOWER_IS_BETTER_METRICS:
        value = record.metric(name)
        if value is not None and value >= 0:
            return 1.0 / (1.0 + float(value))

    return None


def rank_candidates(records: Iterable[EvaluationRecord]) -> List[RankedCandidate]:
    ranked: List[RankedCandidate] = []
    for rec in records:
        score = score_record(rec)
        if score is None:
            logger.debug("Ignoring {}: no usable metric", rec.file_name)
            continue
        ranked.append(RankedCandidate(record=rec, score=score))

    # file_name ascending as the final tie-break, then a stable sort on the rest
    ranked.sort(key=lambda c: c.record.file_name)
    ranked.sort(key=lambda c: (c.score, c.record.trained_at), reverse=True)
    return ranked


def pick_best(records: Iterable[EvaluationRecord]) -> Optional[RankedCandidate]:
    """
    Pick the single best model, or None when no record has a usable metric.
    """
    ranked = rank_candidates(records)
    if not ranked:
        return None

    best = ranked[0]
    logger.info(
        "Selected model {} ({}) with score {:.4f}: {}",
        best.record.model_name,
        best.record.file_name,
        best.score,
        best.record.summary(),
    )
    return best
