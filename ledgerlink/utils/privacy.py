"""Privacy utilities for keeping secrets out of logs."""
import re


def mask_secret(value: str, visible: int = 4) -> str:
    """
    Mask a token or secret, keeping only its last few characters.
    Short values are fully masked.
    """
    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


def mask_url_token(url: str) -> str:
    """Mask the value of a ``token=`` query parameter inside a URL."""
    return re.sub(r"(token=)([^&]+)", lambda m: m.group(1) + mask_secret(m.group(2)), url)
