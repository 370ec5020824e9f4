"""life_manager: Google Calendar/Tasks sync engine and energy-aware day planner."""
