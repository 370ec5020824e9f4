"""Core wiring: ports (Protocols) and application state."""
