"""API schemas and domain value objects."""
