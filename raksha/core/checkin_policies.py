"""Safety check-in policy constants."""

from __future__ import annotations

# Maximum emergency contacts per user
MAX_CONTACTS_PER_USER = 5

# A session escalates once no tick has succeeded for this many intervals
ESCALATION_INTERVAL_MULTIPLIER = 2

# Check-in intervals offered by the client (seconds)
SUGGESTED_INTERVALS_SECONDS = (300, 600, 900, 1800, 3600)

# Bounds accepted by the API (seconds)
MIN_INTERVAL_SECONDS = 60
MAX_INTERVAL_SECONDS = 60 * 60 * 6
MAX_DEACTIVATION_LIMIT_SECONDS = 60 * 60 * 24

# Statuses that count as an open session for the one-per-owner rule
OPEN_STATUSES = ("active", "escalated", "critical")

# Open statuses an abandoned session can be archived from; critical only leaves via mark-safe
ARCHIVABLE_STATUSES = ("active", "escalated")

# Statuses from which no further transition is possible
TERMINAL_STATUSES = ("completed", "archived")

# E.164: leading "+", country code, up to 15 digits total
E164_PATTERN = r"^\+[1-9]\d{7,14}$"
