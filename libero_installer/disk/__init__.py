"""Disk preparation stages: inventory, release, planning, partitioning, layering, formatting."""
