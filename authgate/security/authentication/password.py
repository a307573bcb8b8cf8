"""Password complexity policy."""

from __future__ import annotations

from typing import List, Tuple


DEFAULT_SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


class PasswordPolicy:
    """Password policy configuration."""

    def __init__(
        self,
        min_length: int = 12,
        special_chars: str = DEFAULT_SPECIAL_CHARS,
    ):
        self.min_length = min_length
        self.special_chars = special_chars

    def validate(self, password: str) -> Tuple[bool, str]:
        """Validate a password against the policy."""
        if len(password) < self.min_length:
            return False, f"password must be at least {self.min_length} characters long"

        missing: List[str] = []
        if not any("A" <= c <= "Z" for c in password):
            missing.append("uppercase letter")
        if not any("a" <= c <= "z" for c in password):
            missing.append("lowercase letter")
        if not any("0" <= c <= "9" for c in password):
            missing.append("number")
        if not any(c in self.special_chars for c in password):
            missing.append("special character")

        if missing:
            return False, f"password must contain at least one: {', '.join(missing)}"

        return True, ""
