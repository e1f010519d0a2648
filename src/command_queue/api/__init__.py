"""HTTP surface for producers and workers."""
