"""Training institute course backend (course reminder service)."""
