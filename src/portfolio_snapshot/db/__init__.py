"""History persistence backends."""
