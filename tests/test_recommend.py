import pickle

import numpy as np
import pandas as pd
import pytest

from recmail.baseline_model import SkuAffinityModel
from recmail.pipeline_types import (
    EvaluationRecord,
    RankedCandidate,
    Recipient,
    ScoringRow,
)
from recmail.recommend import (
    iter_scoring_rows,
    load_model,
    recommend_top_products,
    score_rows,
    top_n_by_recipient,
)


class DummyModel:
    """Scores rows as sku * 0.01 + customer_id; records each predict call."""

    def __init__(self):
        self.calls = []

    def predict(self, frame):
        self.calls.append(len(frame))
        return (frame["sku"] * 0.01 + frame["customer_id"]).to_numpy()


class DummyStore:
    def __init__(self, blob=b""):
        self.blob = blob
        self.reads = []

    def get_recent(self, limit, prefix):
        return []

    def read_bytes(self, key):
        self.reads.append(key)
        return self.blob


def _candidate():
    from datetime import datetime, timezone

    rec = EvaluationRecord("m", "models/m.pkl", datetime(2024, 1, 1, tzinfo=timezone.utc), {"auc": 0.8})
    return RankedCandidate(record=rec, score=0.8)


RECIPIENTS = [
    Recipient("ann@example.com", 1),
    Recipient("", 2),
    Recipient("bob@example.com", 3),
]


def test_iter_scoring_rows_scores_only_recipients_with_email():
    rows = iter_scoring_rows(RECIPIENTS, [10, 20])
    assert not isinstance(rows, list)
    rows = list(rows)
    assert len(rows) == 4
    assert {r.customer_id for r in rows} == {1, 3}


def test_iter_scoring_rows_legacy_filter_inverts():
    rows = list(iter_scoring_rows(RECIPIENTS, [10, 20], legacy_inverted_email_filter=True))
    assert [(r.customer_id, r.sku) for r in rows] == [(2, 10), (2, 20)]


def test_score_rows_single_batch_call():
    model = DummyModel()
    rows = [ScoringRow("a@x.com", 1, 10), ScoringRow("a@x.com", 1, 20), ScoringRow("b@x.com", 2, 10)]
    scored = score_rows(model, iter(rows))

    assert model.calls == [3]
    assert list(scored.columns) == ["email", "customer_id", "sku", "score"]
    assert scored["score"].tolist() == pytest.approx([1.1, 1.2, 2.1])


def test_score_rows_rejects_cardinality_mismatch():
    class Short:
        def predict(self, frame):
            return np.zeros(len(frame) - 1)

    with pytest.raises(ValueError):
        score_rows(Short(), [ScoringRow("a@x.com", 1, 10), ScoringRow("a@x.com", 1, 20)])


def test_top_n_by_recipient_groups_case_insensitively_and_sorts():
    scored = pd.DataFrame(
        {
            "email": ["Ann@x.com", "ann@x.com", "ANN@x.com", "bob@x.com", "ann@x.com"],
            "customer_id": [1, 1, 1, 2, 1],
            "sku": [1, 2, 3, 4, 5],
            "score": [0.1, 0.9, 0.5, 0.3, 0.9],
        }
    )
    recs = top_n_by_recipient(scored, 3)

    assert set(recs) == {"Ann@x.com", "bob@x.com"}
    ann = recs["ann@X.com"]
    # ties (sku 2 and 5) keep input order
    assert [e.sku for e in ann] == [2, 5, 3]
    assert [e.score for e in ann] == sorted([e.score for e in ann], reverse=True)
    assert [e.sku for e in recs["bob@x.com"]] == [4]


def test_top_n_length_is_min_of_n_and_group_size():
    scored = pd.DataFrame(
        {"email": ["a@x.com"] * 4, "customer_id": [1] * 4, "sku": [1, 2, 3, 4], "score": [0.4, 0.3, 0.2, 0.1]}
    )
    assert len(top_n_by_recipient(scored, 2)["a@x.com"]) == 2
    assert len(top_n_by_recipient(scored, 10)["a@x.com"]) == 4
    with pytest.raises(ValueError):
        top_n_by_recipient(scored, 0)


def test_load_model_requires_predict():
    model = load_model(pickle.dumps(SkuAffinityModel({1: 0.5})))
    assert hasattr(model, "predict")
    with pytest.raises(TypeError):
        load_model(pickle.dumps({"not": "a model"}))


def test_recommend_top_products_loads_selected_model_from_store():
    store = DummyStore(pickle.dumps(SkuAffinityModel({10: 1.0, 20: 0.0, 30: 0.5}, prior_weight=1.0)))
    recs = recommend_top_products(store, _candidate(), RECIPIENTS, [10, 20, 30], top_n=2)

    assert store.reads == ["models/m.pkl"]
    assert set(recs) == {"ann@example.com", "bob@example.com"}
    assert [e.sku for e in recs["ann@example.com"]] == [10, 30]


def test_recommend_top_products_without_rows_skips_model_load():
    store = DummyStore()
    recs = recommend_top_products(store, _candidate(), [Recipient("", 1)], [10], top_n=5)
    assert len(recs) == 0
    assert store.reads == []


def test_recommend_top_products_propagates_model_load_failure():
    store = DummyStore(b"definitely not a pickle")
    with pytest.raises(Exception):
        recommend_top_products(store, _candidate(), RECIPIENTS, [10], top_n=5)
