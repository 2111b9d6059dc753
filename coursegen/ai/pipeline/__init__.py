"""Stage output contracts."""
