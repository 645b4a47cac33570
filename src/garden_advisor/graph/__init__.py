"""Per-zone analysis workflow."""
