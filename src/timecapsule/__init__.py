"""Time Capsule - time-locked, hash-gated release of encrypted messages."""

__version__ = "0.1.0"
