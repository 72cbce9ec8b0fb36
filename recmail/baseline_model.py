from __future__ import annotations

"""
A small, picklable scoring model with the interface the recommender expects.

Real deployments store whatever trained model they like, as long as the
unpickled object exposes ``predict(frame) -> array`` over a frame with
``customer_id`` and ``sku`` columns.  This one blends a per-SKU popularity
prior with a deterministic per-(customer, sku) affinity so demo runs produce
stable, customer-specific rankings.
"""

from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd


class SkuAffinityModel:
    def __init__(
        self,
        sku_weights: Optional[Mapping[int, float]] = None,
        prior_weight: float = 0.7,
        seed: int = 0,
    ):
        self.sku_weights: Dict[int, float] = {int(k): float(v) for k, v in (sku_weights or {}).items()}
        self.prior_weight = float(prior_weight)
        self.seed = int(seed)

    def _affinity(self, customer: np.ndarray, sku: np.ndarray) -> np.ndarray:
        # multiplicative hashing; wraparound is fine, only determinism matters
        mixed = customer.astype(np.uint64) * np.uint64(2654435761) + sku.astype(np.uint64) * np.uint64(40503)
        mixed = mixed + np.uint64(self.seed)
        return (mixed % np.uint64(1000)).astype("float64") / 1000.0

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        customer = frame["customer_id"].to_numpy(dtype=np.int64)
        sku = frame["sku"].to_numpy(dtype=np.int64)
        prior = frame["sku"].map(self.sku_weights).fillna(0.0).to_numpy(dtype="float64")
        scores = self.prior_weight * prior + (1.0 - self.prior_weight) * self._affinity(customer, sku)
        return scores.astype("float32")
