"""
client — Client-side delivery of push notifications.

Sub-modules:
    delivery_router — Tray rules, tag replacement and deep-link routing on tap
"""
