"""External payment provider integrations."""
