"""
reminders — Periodic, dismissible reminders for unresolved sessions.

Sub-modules:
    scheduler — Per-user polling loop, timing rules and session registry
"""
