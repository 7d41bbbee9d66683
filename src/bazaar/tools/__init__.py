"""Dict-returning marketplace tools."""
