"""Farthest-point diversity selection over embedding vectors."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from itertools import combinations
from math import inf, isfinite, isnan, sqrt
from typing import Literal

Metric = Literal["cosine", "euclidean"]
Vector = Sequence[float]

_EPSILON = 1e-10


def cosine_similarity(a: Vector, b: Vector) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a < _EPSILON or norm_b < _EPSILON or not isfinite(norm_a) or not isfinite(norm_b):
        return 0.0
    similarity = numerator / (norm_a * norm_b)
    return similarity if isfinite(similarity) else 0.0


def cosine_distance(a: Vector, b: Vector) -> float:
    """1 - cosine similarity, in [0, 2]."""
    return 1.0 - cosine_similarity(a, b)


def euclidean_distance(a: Vector, b: Vector) -> float:
    if len(a) != len(b):
        return inf
    return sqrt(sum((x - y) ** 2 for x, y in zip(a, b, strict=True)))


_METRICS: dict[str, Callable[[Vector, Vector], float]] = {
    "cosine": cosine_distance,
    "euclidean": euclidean_distance,
}


def distance_function(metric: str) -> Callable[[Vector, Vector], float]:
    try:
        return _METRICS[metric]
    except KeyError as exc:
        raise ValueError(f"Unknown distance metric: {metric}") from exc


def centroid(embeddings: Sequence[Vector]) -> list[float]:
    if not embeddings:
        return []
    dimension = len(embeddings[0])
    totals = [0.0] * dimension
    for vector in embeddings:
        for i, value in enumerate(vector):
            totals[i] += value
    return [value / len(embeddings) for value in totals]


def select_diverse(
    embeddings: Sequence[Vector],
    count: int,
    *,
    already_selected: Iterable[int] = (),
    metric: Metric = "cosine",
) -> list[int]:
    """Greedy max-min selection of `count` new indices.

    Without prior selections the first pick is the vector nearest the centroid
    (the most representative chunk). Each further pick is the candidate whose
    minimum distance to everything already selected is largest. `already_selected`
    indices are treated as picked but never returned, so follow-up sampling
    keeps spreading away from what the caller has already seen.

    Ties break toward the lowest index, so the result is deterministic.
    Returns new indices in selection order.
    """

    distance = distance_function(metric)
    selected = [index for index in already_selected if 0 <= index < len(embeddings)]
    excluded = set(selected)
    candidates = [index for index in range(len(embeddings)) if index not in excluded]
    count = min(max(0, int(count)), len(candidates))
    if count == 0:
        return []

    if not selected and count == len(candidates):
        return candidates

    picked: list[int] = []
    if not selected:
        center = centroid(embeddings)
        seed = min(candidates, key=lambda index: (distance(embeddings[index], center), index))
        picked.append(seed)
        selected.append(seed)
        candidates.remove(seed)

    # Running minimum distance from each candidate to the selected set.
    nearest = {
        index: min(distance(embeddings[index], embeddings[chosen]) for chosen in selected)
        for index in candidates
    }

    while len(picked) < count:
        # NaN distances never win; with no comparable distance take the lowest index.
        best_index = candidates[0]
        best_distance = -inf
        for index in candidates:
            if not isnan(nearest[index]) and nearest[index] > best_distance:
                best_distance = nearest[index]
                best_index = index
        picked.append(best_index)
        candidates.remove(best_index)
        del nearest[best_index]
        chosen = embeddings[best_index]
        for index in candidates:
            nearest[index] = min(nearest[index], distance(embeddings[index], chosen))

    return picked


def _pairwise(embeddings: Sequence[Vector], metric: Metric) -> list[float]:
    distance = distance_function(metric)
    return [distance(a, b) for a, b in combinations(embeddings, 2)]


def average_pairwise_distance(embeddings: Sequence[Vector], metric: Metric = "cosine") -> float:
    distances = _pairwise(embeddings, metric)
    return sum(distances) / len(distances) if distances else 0.0


def minimum_pairwise_distance(embeddings: Sequence[Vector], metric: Metric = "cosine") -> float:
    """Smallest pairwise distance; `inf` for fewer than two vectors."""
    distances = _pairwise(embeddings, metric)
    return min(distances) if distances else inf


def maximum_pairwise_distance(embeddings: Sequence[Vector], metric: Metric = "cosine") -> float:
    distances = _pairwise(embeddings, metric)
    return max(distances) if distances else 0.0
