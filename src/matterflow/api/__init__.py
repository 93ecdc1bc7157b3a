"""HTTP surface for scheduled calendar sync runs."""
