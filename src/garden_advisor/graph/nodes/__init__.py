"""Per-zone workflow nodes."""
