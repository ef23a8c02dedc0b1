import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailValidator:
    """Borrower identities are email addresses, compared case-insensitively."""

    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return raw.strip().lower()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(_EMAIL_RE.match(EmailValidator.normalize_email(email)))


class TextValidator:
    """Basic checks for descriptive book fields."""

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        if title is None:
            return False
        t = title.strip()
        if not t:
            return False
        return any(c.isalnum() for c in t)

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip markup; descriptions are rendered by the web client
        cleaned = re.sub(r"<[^>]*>", "", text)
        return cleaned.strip()
