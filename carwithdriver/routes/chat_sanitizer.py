# Masks contact details in chat messages
import re
from typing import List, NamedTuple

PHONE_PATTERN = re.compile(r"(?:\+?\d[\d\s().-]{7,})")
EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
URL_PATTERN = re.compile(r"((?:https?://|www\.)[^\s]+)", re.IGNORECASE)

MASK = "[hidden]"
CONTACT_WARNING = (
    "Contact details and direct links are hidden for safety. "
    "Share plans without posting phone numbers, emails, or URLs."
)

# Emails and links go first so digits inside them are not reported as phone numbers
_RULES = (
    ("email", EMAIL_PATTERN),
    ("link", URL_PATTERN),
    ("phone", PHONE_PATTERN),
)


class SanitizedMessage(NamedTuple):
    text: str
    violations: List[str]
    warning: str


def sanitize_chat_content(content) -> SanitizedMessage:
    if not isinstance(content, str):
        return SanitizedMessage("", [], "")

    violations = []
    text = content
    for violation_type, pattern in _RULES:
        text, count = pattern.subn(MASK, text)
        if count and violation_type not in violations:
            violations.append(violation_type)

    warning = CONTACT_WARNING if violations else ""
    return SanitizedMessage(text.strip(), violations, warning)
