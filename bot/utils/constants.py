from __future__ import annotations

import discord

from database.models import TicketStatus

STATUS_COLORS: dict[str, discord.Color] = {
    TicketStatus.OPEN: discord.Color.green(),
    TicketStatus.CLOSED: discord.Color.orange(),
    TicketStatus.DELETED: discord.Color.dark_grey(),
}

# Persistent view custom ids; must stay stable across restarts.
CONTROL_CLOSE_ID = "ticket:close"
CONTROL_REOPEN_ID = "ticket:reopen"
CONTROL_DELETE_ID = "ticket:delete"

MAX_BULK_TICKETS = 50
TRANSCRIPT_FILE_TEMPLATE = "ticket-{number}-transcript.txt"
EXPORT_FILE_TEMPLATE = "analytics-{guild_id}-{days}d.json"
