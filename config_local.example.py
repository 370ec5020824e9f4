# config_local.example.py

"""
Example local overrides.

Usage:
  1) Copy this file to `config_local.py`
  2) Adjust values for your machine
  3) Never commit `config_local.py` (it is gitignored)

Prefer `.env` for secrets. This file should contain only safe overrides.
"""

# Example: run headless (sync worker only)
# CONSOLE_ENABLED = False

# Example: drain the retry queue only on demand via /retry
# SYNC_WORKER_ENABLED = False
