"""Login pipeline, sessions and password policy."""

from authgate.security.authentication.orchestrator import AuthenticationOrchestrator
from authgate.security.authentication.password import PasswordPolicy
from authgate.security.authentication.session import SessionManager, SessionSecurityEvent

__all__ = [
    "AuthenticationOrchestrator",
    "PasswordPolicy",
    "SessionManager",
    "SessionSecurityEvent",
]
