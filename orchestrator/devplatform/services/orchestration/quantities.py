"""
Resource quantity codec.

Parses Kubernetes quantity strings into plain numbers (CPU in cores,
memory in bytes) and formats numbers back into canonical quantity strings.
Parsing is delegated to `kubernetes.utils.parse_quantity`, which covers
every suffix the API server accepts (n, u, m, k, M, G, Ki, Mi, Gi, ...).
"""

from decimal import Decimal
from typing import Optional, Union

from kubernetes.utils import parse_quantity

QuantityInput = Optional[Union[str, int, float]]

_BINARY_UNITS = (
    ("Ti", 1024 ** 4),
    ("Gi", 1024 ** 3),
    ("Mi", 1024 ** 2),
    ("Ki", 1024),
)


def _parse(value: QuantityInput) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return Decimal(0)
    try:
        return parse_quantity(value)
    except ValueError as e:
        raise ValueError(f"Invalid resource quantity: {value!r}") from e


def parse_cpu(value: QuantityInput) -> float:
    """
    Parse a CPU quantity into cores.

    Examples:
        >>> parse_cpu("500m")
        0.5
        >>> parse_cpu("250000000n")
        0.25
        >>> parse_cpu("2")
        2.0
    """
    return float(_parse(value))


def parse_memory(value: QuantityInput) -> int:
    """
    Parse a memory quantity into bytes (fractions are truncated).

    Examples:
        >>> parse_memory("4Gi")
        4294967296
        >>> parse_memory("1G")
        1000000000
    """
    return int(_parse(value))


def format_cpu(cores: float) -> str:
    """
    Format cores as a CPU quantity.

    Whole cores are written plainly, anything else in millicores.

    Examples:
        >>> format_cpu(2)
        "2"
        >>> format_cpu(0.5)
        "500m"
    """
    millicores = int(round(cores * 1000))
    if millicores % 1000 == 0:
        return str(millicores // 1000)
    return f"{millicores}m"


def format_memory(num_bytes: int) -> str:
    """
    Format bytes as a memory quantity using the largest exact binary unit.

    Examples:
        >>> format_memory(4294967296)
        "4Gi"
        >>> format_memory(1536 * 1024 * 1024)
        "1536Mi"
        >>> format_memory(1000)
        "1000"
    """
    num_bytes = int(num_bytes)
    for suffix, factor in _BINARY_UNITS:
        if num_bytes and num_bytes % factor == 0:
            return f"{num_bytes // factor}{suffix}"
    return str(num_bytes)


def format_memory_human(num_bytes: int) -> str:
    """One-decimal display form used in logs and usage reports, e.g. "1.5Gi"."""
    for suffix, factor in _BINARY_UNITS:
        if abs(num_bytes) >= factor:
            return f"{num_bytes / factor:.1f}{suffix}"
    return f"{num_bytes}B"
