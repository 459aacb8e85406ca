"""Category diversity re-ranking."""

from typing import Dict, List

from marketintel.models import RecommendationResult

DEFAULT_PENALTY_SCALE = 0.1


def diversity_rerank(
    ranked: List[RecommendationResult],
    categories: Dict[str, str],
    diversity_weight: float,
    penalty_scale: float = DEFAULT_PENALTY_SCALE,
) -> List[RecommendationResult]:
    """Penalize repeated categories and re-sort.

    Walks ``ranked`` (already sorted by descending score) and subtracts
    ``penalty_scale * diversity_weight * n`` from each item, where ``n`` is
    the number of earlier items in the same category. The result is
    re-sorted by penalized score; the sort is stable, so ties keep their
    original order.

    Args:
        ranked: Results sorted by descending hybrid score.
        categories: Item id to category.
        diversity_weight: Strength of the penalty; 0 leaves scores unchanged.
        penalty_scale: Penalty per earlier same-category item at weight 1.

    Returns:
        New result objects with penalized scores, best first.
    """
    if diversity_weight <= 0:
        return list(ranked)

    seen: Dict[str, int] = {}
    penalized = []
    for result in ranked:
        category = categories.get(result.item_id, "")
        already_selected = seen.get(category, 0)
        penalty = penalty_scale * diversity_weight * already_selected
        penalized.append(result.model_copy(update={"score": result.score - penalty}))
        seen[category] = already_selected + 1

    return sorted(penalized, key=lambda r: r.score, reverse=True)
