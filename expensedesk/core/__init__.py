"""Domain exceptions raised by services."""
