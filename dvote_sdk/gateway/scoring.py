"""
Weighted scores used to rank healthy nodes.

The random share spreads clients over equivalent nodes, the time share
favours fast nodes and the health share favours nodes reporting a good
state. The weights are tuning values and can be replaced per client.
"""
from dataclasses import dataclass
from typing import Optional

from ..utils import get_big_int


@dataclass(frozen=True)
class ScoreWeights:
    random: float
    time: float
    health: float = 0.0

    def __post_init__(self):
        for name in ("random", "time", "health"):
            if getattr(self, name) < 0:
                raise ValueError(f"Score weight '{name}' cannot be negative")


DVOTE_WEIGHTS = ScoreWeights(random=0.2, time=0.6, health=0.2)
WEB3_WEIGHTS = ScoreWeights(random=0.4, time=0.6)


def weighted_score(
    weights: ScoreWeights,
    response_time_ms: float,
    timeout_ms: float,
    health: Optional[float] = None,
    jitter: Optional[int] = None,
) -> int:
    """
    Blend a random value, the response time and the health into a 0-100 score.

    Args:
        weights: Share of each component
        response_time_ms: Measured round-trip time
        timeout_ms: Time budget the response time is measured against
        health: Health reported by the node (0-100); ignored when None
        jitter: Random component (0-99); drawn when None

    Returns:
        The rounded score, higher is better
    """
    if jitter is None:
        jitter = get_big_int(100)

    if timeout_ms > 0:
        time_score = 100 * (timeout_ms - response_time_ms) / timeout_ms
    else:
        time_score = 0

    score = jitter * weights.random + time_score * weights.time
    if health is not None:
        score += health * weights.health
    return round(score)
