# upside/ranker.py
from __future__ import annotations
from typing import Iterable, List, Tuple
from upside.models import Prediction

def rank_opportunities(predictions: Iterable[Prediction], min_upside: float) -> Tuple[List[Prediction], int]:
    """Keep predictions with at least `min_upside` percent upside, best combined score first.

    sorted() is stable, so equal scores keep their input order.
    """
    kept = [p for p in predictions if p.predicted_upside >= min_upside]
    ranked = sorted(kept, key=lambda p: p.combined_score, reverse=True)
    return ranked, len(ranked)
