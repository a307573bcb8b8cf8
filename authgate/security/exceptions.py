"""Exceptions raised by authgate administrative operations."""

from __future__ import annotations


class AuthGateError(Exception):
    """Base class for authgate errors."""


class DeviceNotFoundError(AuthGateError, KeyError):
    """A device fingerprint has never been observed."""

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Device not found: {fingerprint}")

    def __str__(self) -> str:
        return self.args[0]


class SessionNotFoundError(AuthGateError, KeyError):
    """A session identifier is unknown."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id[:12]}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidNetworkPolicyError(AuthGateError, ValueError):
    """A network policy range could not be parsed."""


class CertificateParseError(AuthGateError, ValueError):
    """A peer certificate could not be decoded."""
