"""Local-first wishlist store with remote sync and realtime collaboration."""
