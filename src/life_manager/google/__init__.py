"""Google Calendar / Google Tasks REST clients and OAuth token management."""
