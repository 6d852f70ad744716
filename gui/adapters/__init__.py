"""GUI adapter layer.

This package provides thin Qt-shaped adapters over the cric engine service.

Notes
-----
Adapters exist to:
- keep GUI code free of persistence and process details,
- keep store writes and jlink launches off the UI thread,
- turn engine events and domain errors into Qt signals.
"""
