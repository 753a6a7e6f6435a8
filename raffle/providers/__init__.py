"""External payment providers."""
