"""Application layer: caches, services and workers."""
