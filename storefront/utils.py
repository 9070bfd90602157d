from typing import Optional

import bleach


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied string for safe display in the storefront.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=set(), strip=True)
    return val.strip()


def normalize_username(value: str) -> str:
    # Every path that stores or looks up a username goes through here
    return value.strip()
