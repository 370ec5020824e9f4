"""User-facing connectors (console REPL)."""
