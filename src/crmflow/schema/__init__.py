"""Schema discovery and per-object templates."""
