"""GitHub commit building."""
