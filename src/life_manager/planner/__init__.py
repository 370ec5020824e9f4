"""Energy-aware time-blocking planner."""
