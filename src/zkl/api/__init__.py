"""HTTP surface for the proof service."""
