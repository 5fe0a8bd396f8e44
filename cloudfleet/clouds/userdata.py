"""Helpers for cloud-init user-data and generated login passwords."""

from __future__ import annotations

import base64
import re
import secrets
import string

# Root password embedded in a cloud-init chpasswd line
ROOT_PASSWORD_RE = re.compile(r"""echo\s+['"]root:([^'"]+)['"].*chpasswd""")

PASSWORD_SYMBOLS = "!@#%^*-_"


def extract_root_password(user_data: str | None) -> str | None:
    """Find a root password set by an ``echo 'root:...' | chpasswd`` line."""
    if not user_data:
        return None
    match = ROOT_PASSWORD_RE.search(user_data)
    return match.group(1) if match else None


def generate_password(length: int = 24) -> str:
    """Random password with lower, upper, digit and symbol characters.

    Satisfies both Linode's root password and Azure's admin password
    complexity rules.
    """
    alphabet = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if (any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)
                and any(c in PASSWORD_SYMBOLS for c in password)):
            return password


def encode_custom_data(user_data: str | None) -> str | None:
    """Base64-encode user-data as UTF-8, or None when there is none."""
    if not user_data:
        return None
    return base64.b64encode(user_data.encode("utf-8")).decode("ascii")
