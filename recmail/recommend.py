from __future__ import annotations

import itertools
import pickle
from typing import Iterable, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd
from loguru import logger

from .metric_store import MetricStore
from .pipeline_types import (
    RankedCandidate,
    Recipient,
    RecipientRecommendations,
    RecommendationEntry,
    ScoringRow,
)

SCORED_COLUMNS = ["email", "customer_id", "sku", "score"]


# ---------------------------------------------------------------------------
# Model handling
# ---------------------------------------------------------------------------

def load_model(model_bytes: bytes) -> object:
    """
    Unpickle a stored scoring model.

    Any object exposing ``predict(frame)`` works.  Failures propagate: a
    selected model that cannot be loaded is fatal for the run.
    """
    model = pickle.loads(model_bytes)
    if not callable(getattr(model, "predict", None)):
        raise TypeError(f"Stored model {type(model).__name__} has no predict()")
    logger.info("Loaded scoring model {} ({} bytes)", type(model).__name__, len(model_bytes))
    return model


# ---------------------------------------------------------------------------
# Scoring rows
# ---------------------------------------------------------------------------

def iter_scoring_rows(
    recipients: Iterable[Recipient],
    skus: Sequence[int],
    *,
    legacy_inverted_email_filter: bool = False,
) -> Iterator[ScoringRow]:
    """
    Lazily yield one row per (recipient, sku) pair.

    Only recipients with a non-empty email are scored.  With
    ``legacy_inverted_email_filter`` the historical behaviour is reproduced
    instead: only recipients whose email is empty get rows.
    """
    for recipient in recipients:
        has_email = bool(recipient.email and recipient.email.strip())
        if has_email == legacy_inverted_email_filter:
            continue
        for sku in skus:
            yield ScoringRow(email=recipient.email, customer_id=recipient.customer_id, sku=int(sku))


def score_rows(model: object, rows: Iterable[ScoringRow]) -> pd.DataFrame:
    """
    Score every row with one batched ``model.predict`` call.

    Returns a frame with columns email, customer_id, sku, score in input order.
    """
    frame = pd.DataFrame.from_records(
        ((r.email, r.customer_id, r.sku) for r in rows),
        columns=["email", "customer_id", "sku"],
    )
    if frame.empty:
        return pd.DataFrame(columns=SCORED_COLUMNS)

    preds = np.asarray(model.predict(frame[["customer_id", "sku"]]), dtype="float64").reshape(-1)
    if len(preds) != len(frame):
        raise ValueError(
            f"Scoring model returned {len(preds)} scores for {len(frame)} rows"
        )

    frame["score"] = preds
    return frame[SCORED_COLUMNS]


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def top_n_by_recipient(scored: pd.DataFrame, top_n: int) -> RecipientRecommendations:
    """
    Group scored rows by email (case-insensitive) and keep the ``top_n`` best.

    Ties keep their input order.
    """
    if top_n <= 0:
        raise ValueError(f"top_n must be > 0, got {top_n}")
    if scored.empty:
        return RecipientRecommendations()

    df = scored.reset_index(drop=True).copy()
    df["_key"] = df["email"].astype(str).str.casefold()

    first_spelling = df.drop_duplicates("_key")[["_key", "email"]]

    ranked = df.sort_values("score", ascending=False, kind="stable")
    top = ranked.groupby("_key", sort=False).head(top_n)

    grouped = {
        key: [
            RecommendationEntry(sku=int(sku), score=float(score))
            for sku, score in zip(group["sku"], group["score"])
        ]
        for key, group in top.groupby("_key", sort=False)
    }

    return RecipientRecommendations(
        (email, grouped.get(key, []))
        for key, email in first_spelling.itertuples(index=False, name=None)
    )


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------

def recommend_top_products(
    store: MetricStore,
    candidate: RankedCandidate,
    recipients: List[Recipient],
    skus: List[int],
    top_n: int,
    *,
    legacy_inverted_email_filter: bool = False,
    model: Optional[object] = None,
) -> RecipientRecommendations:
    """
    Top-N product recommendations per recipient using the selected model.

    Pass ``model`` to skip loading the blob from the store (tests).
    Recipients with no scored rows are absent from the result.
    """
    if top_n <= 0:
        raise ValueError(f"top_n must be > 0, got {top_n}")

    rows = iter_scoring_rows(
        recipients, skus, legacy_inverted_email_filter=legacy_inverted_email_filter
    )
    first = next(rows, None)
    if first is None:
        logger.warning(
            "No scoring rows for {} recipients x {} SKUs; no recommendations",
            len(recipients),
            len(skus),
        )
        return RecipientRecommendations()

    if model is None:
        model = load_model(store.read_bytes(candidate.file_name))

    scored = score_rows(model, itertools.chain([first], rows))
    logger.info("Scored {} recipient/product rows with {}", len(scored), candidate.file_name)

    recs = top_n_by_recipient(scored, top_n)
    logger.info("Built top-{} recommendations for {} recipients", top_n, len(recs))
    return recs
