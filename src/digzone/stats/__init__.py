"""Stats — derived counts over the grid."""

from digzone.stats.aggregator import (
    FieldAudit,
    GridSummary,
    MinerEntry,
    UserSummary,
    audit_claim_fields,
    count_claimed,
    grid_summary,
    per_user_distribution,
    top_miners,
)

__all__ = [
    "FieldAudit",
    "GridSummary",
    "MinerEntry",
    "UserSummary",
    "audit_claim_fields",
    "count_claimed",
    "grid_summary",
    "per_user_distribution",
    "top_miners",
]
