"""Multi-rate sensor fusion plumbing."""

from navcore.fusion.aiding_buffer import AidingBuffer

__all__ = ["AidingBuffer"]
