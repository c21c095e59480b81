"""HTTP routes for administration, health and metrics."""
