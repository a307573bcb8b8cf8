"""Attack protection."""

from authgate.security.protection.brute_force import BruteForceGuard

__all__ = ["BruteForceGuard"]
