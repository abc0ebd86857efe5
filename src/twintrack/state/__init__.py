"""State/store layer.

This package is the single source of truth for live tracking state. The
stream client and the timeout monitor mutate it only through
:class:`~twintrack.state.store.TrackingStore` operations; readers receive
immutable snapshots.
"""
