"""
urgency — Incident urgency scoring.

Sub-modules:
    scorer — weighted additive score, tiers, glow ladder, focus/calm helpers
"""
