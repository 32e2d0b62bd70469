"""Draw settlement: prize allocation, pool sizing, and the winner state machine."""

from .allocation import (
    DrawSettlementSummary,
    TierSummary,
    WinnerAllocation,
    compute_winners,
    match_count,
    summarize_allocations,
)
from .engine import DrawSettlementEngine
from .pool import (
    DrawPoolAnalysis,
    PrizePool,
    analyze_draw_pool,
    calculate_prize_pool,
    validate_score,
)

__all__ = [
    "DrawPoolAnalysis",
    "DrawSettlementEngine",
    "DrawSettlementSummary",
    "PrizePool",
    "TierSummary",
    "WinnerAllocation",
    "analyze_draw_pool",
    "calculate_prize_pool",
    "compute_winners",
    "match_count",
    "summarize_allocations",
    "validate_score",
]
