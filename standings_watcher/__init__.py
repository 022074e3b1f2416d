"""
Standings Watcher - live tournament standings monitoring.

This package provides functionality to:
- Fetch a live standings page with bounded retries
- Locate the standings table and map its columns, whatever their order
- Parse player rows tolerantly into immutable snapshots
- Detect typed changes between consecutive snapshots
- Notify chat subscribers and answer status commands
"""

__version__ = "1.0.0"
__author__ = "Standings Watcher Team"
