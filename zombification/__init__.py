"""ZOMBIEFICATION - a Halloween infection game played on Farcaster."""

__version__ = "1.0.0"
