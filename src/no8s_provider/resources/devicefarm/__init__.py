"""AWS Device Farm resource types."""
