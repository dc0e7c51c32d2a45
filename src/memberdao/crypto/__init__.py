"""Hashing primitives for memberdao."""

from .hashing import Hash, SHA256Hasher

__all__ = ["Hash", "SHA256Hasher"]
