"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every state change the system records.
"""

# ─── Identity ─────────────────────────────────────────────

USER_REGISTERED = "user.registered"

# ─── Request lifecycle ────────────────────────────────────

REQUEST_CREATED = "request.created"
REQUEST_ACCEPTED = "request.accepted"
REQUEST_DECLINED = "request.declined"

# ─── Matches + chat ───────────────────────────────────────

MATCH_CREATED = "match.created"
MESSAGE_SENT = "message.sent"
