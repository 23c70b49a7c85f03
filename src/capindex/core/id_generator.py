"""
Centralized ID generation for capindex.
"""

import secrets


def generate_id() -> str:
    """
    Generate a 32-character hex identifier.

    Used to tag errors and trace spans so log lines can be correlated.
    """
    return secrets.token_hex(16)


def is_valid_id(value: str) -> bool:
    """Check that a string looks like an ID produced by generate_id()."""
    if not isinstance(value, str) or len(value) != 32:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True
