import random
from datetime import datetime, timedelta, timezone

from recmail.model_selector import pick_best, rank_candidates, score_record
from recmail.pipeline_types import EvaluationRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _rec(name, days=0, **metrics):
    return EvaluationRecord(
        model_name=name,
        file_name=f"models/{name}.pkl",
        trained_at=T0 + timedelta(days=days),
        metrics=metrics,
    )


def test_score_record_priority_and_error_fallback():
    assert score_record(_rec("a", auc=0.8, accuracy=0.95)) == 0.8
    assert score_record(_rec("b", r_squared=0.5)) == 0.5
    assert score_record(_rec("c", rmse=1.0)) == 0.5
    assert score_record(_rec("d", log_loss=0.3)) is None
    assert score_record(_rec("e", precision=0.9, recall=0.8)) is None


def test_pick_best_highest_score_wins():
    best = pick_best([_rec("a", auc=0.7), _rec("b", auc=0.9), _rec("c", auc=0.8)])
    assert best is not None
    assert best.record.model_name == "b"
    assert best.score == 0.9


def test_pick_best_none_without_usable_metrics():
    assert pick_best([]) is None
    assert pick_best([_rec("a"), _rec("b", precision=0.9)]) is None


def test_ties_prefer_recent_then_file_name():
    older = _rec("older", days=0, auc=0.8)
    newer = _rec("newer", days=5, auc=0.8)
    assert pick_best([older, newer]).record.model_name == "newer"

    a = _rec("a", days=1, auc=0.8)
    b = _rec("b", days=1, auc=0.8)
    assert pick_best([b, a]).record.model_name == "a"


def test_selection_is_order_independent_and_idempotent():
    records = [_rec(f"m{i}", days=i % 3, auc=round(0.5 + (i % 4) * 0.1, 2)) for i in range(12)]
    records.append(_rec("unscored", days=9))
    first = pick_best(records)
    for seed in range(5):
        shuffled = list(records)
        random.Random(seed).shuffle(shuffled)
        assert pick_best(shuffled) == first


def test_rank_candidates_drops_unscorable():
    ranked = rank_candidates([_rec("a", auc=0.6), _rec("b"), _rec("c", rmse=3.0)])
    assert [c.record.model_name for c in ranked] == ["a", "c"]
