import re
from typing import Optional

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ISBNValidator:
    """ISBN-10 and ISBN-13 checks for catalog input."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            # ISBN-10: weighted 1..10 checksum, 'X' stands for 10 in the last slot
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False


class TextValidator:
    """Basic checks for the free-text fields the shell accepts."""

    @staticmethod
    def _is_non_blank(text: Optional[str]) -> bool:
        return text is not None and bool(text.strip())

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        return TextValidator._is_non_blank(title)

    @staticmethod
    def validate_author(author: Optional[str]) -> bool:
        # must not be digits only
        if not TextValidator._is_non_blank(author):
            return False
        return not author.strip().isdigit()

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        if not TextValidator._is_non_blank(name):
            return False
        return any(c.isalpha() for c in name)

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        # An empty email is allowed; members may register without one
        if email is None or not email.strip():
            return True
        return bool(_EMAIL.match(email.strip()))
