"""
Release Downloads
Daily net-new download series for GitHub release assets, with gap backfill
"""

__version__ = "1.0.0"
