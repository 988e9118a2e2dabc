import re
from decimal import Decimal, InvalidOperation


_QUANTITY_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([KMGTPE]i|[kMGTPE])?$")

_MULTIPLIERS = {
    None: 1,
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
    "k": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "E": 1000**6,
}


def parse_quantity(value: str) -> int:
    """Parse a Kubernetes size quantity such as ``20Gi`` into bytes."""
    match = _QUANTITY_RE.match(value.strip()) if value else None
    if not match:
        raise ValueError(f"invalid quantity {value!r}")
    number, suffix = match.groups()
    try:
        amount = Decimal(number) * _MULTIPLIERS[suffix]
    except InvalidOperation as exc:
        raise ValueError(f"invalid quantity {value!r}") from exc
    return int(amount)


def format_gibibytes(num_bytes: int) -> str:
    gib = Decimal(num_bytes) / Decimal(1024**3)
    text = f"{gib.quantize(Decimal('0.01')):f}".rstrip("0").rstrip(".")
    return f"{text}Gi"
