"""PII and secret scrubbing applied to everything sent to the reasoning service."""

import re

JWT_TOKEN = re.compile(r"Bearer\s+[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+\.[a-zA-Z0-9\-_]+")
SIP_URI = re.compile(r"sip:(?:[^@\s]+)@(?:[^:;>\s]+)")
URL = re.compile(r"https?://[^\s]+")
EMAIL = re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")
IP_V4 = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
PHONE = re.compile(r"(?<!\w)(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4,9}\b")
MIN_PHONE_DIGITS = 8


def _scrub_url(match: re.Match[str]) -> str:
    url = match.group(0)
    if "?" not in url:
        return url
    return url.split("?", 1)[0] + "[URL_PARAMS_REMOVED]"


def _scrub_phone(match: re.Match[str]) -> str:
    text = match.group(0)
    digits = re.sub(r"\D", "", text)
    return "[PHONE]" if len(digits) >= MIN_PHONE_DIGITS else text


def scrub(text: str | None) -> str:
    """Redact tokens, SIP URIs, URL query strings, emails, IPv4 addresses and phone numbers."""
    if text is None:
        return ""
    safe = JWT_TOKEN.sub("[AUTH_TOKEN_REDACTED]", text)
    safe = SIP_URI.sub("[SIP_URI]", safe)
    safe = URL.sub(_scrub_url, safe)
    safe = EMAIL.sub("[EMAIL]", safe)
    safe = IP_V4.sub("[IP_ADDR]", safe)
    return PHONE.sub(_scrub_phone, safe)
