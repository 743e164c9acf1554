"""Digzone — a shared digging board of claimable grid blocks."""
