from __future__ import annotations


def assess_quality(width: int, height: int) -> float:
    """Heuristic 0-1 score from resolution and aspect ratio."""
    score = 1.0
    short_side = min(width, height)
    if short_side <= 0:
        return 0.0
    if short_side < 200:
        score *= 0.3
    elif short_side < 400:
        score *= 0.6
    elif short_side < 500:
        score *= 0.8

    aspect = max(width, height) / short_side
    if aspect > 3:
        score *= 0.5
    elif aspect > 2:
        score *= 0.8
    return round(score, 2)
