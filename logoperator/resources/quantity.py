"""
Storage quantity helpers.

Sizes follow the scheduler's quantity notation ("10Gi", "500M", "1073741824").
"""

import bitmath


def parse_size(size: str) -> int:
    """
    Parse a storage quantity into bytes.

    Args:
        size: Quantity string

    Returns:
        Size in bytes

    Raises:
        ValueError: If the quantity cannot be parsed
    """
    try:
        return int(bitmath.parse_string(str(size).strip(), strict=False).bytes)
    except (ValueError, AttributeError) as e:
        raise ValueError(f"invalid storage size {size!r}") from e


def is_larger(requested: str, provisioned: str) -> bool:
    """True if ``requested`` exceeds ``provisioned``. Unknown capacity never counts as smaller."""
    if not provisioned:
        return False
    return parse_size(requested) > parse_size(provisioned)
