"""
Central constants for the collabdoc application.
"""
from __future__ import annotations

# Pill colours per banner state, consumed by both thin clients.
BANNER_THEME = {
    "final": {"pillBg": "#fee2e2", "pillFg": "#991b1b"},
    "checked_out_self": {"pillBg": "#dcfce7", "pillFg": "#166534"},
    "checked_out_other": {"pillBg": "#fef3c7", "pillFg": "#92400e"},
    "available": {"pillBg": "#e0edff", "pillFg": "#1e40af"},
    "view_only": {"pillBg": "#f3f4f6", "pillFg": "#374151"},
}

MODAL_THEME = {
    "background": "#ffffff",
    "border": "#e5e7eb",
    "headerBg": "#ffffff",
    "headerFg": "#111827",
    "muted": "#6b7280",
    "primary": "#111827",
}
