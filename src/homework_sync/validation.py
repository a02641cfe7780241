"""Identifier checks done before any store call."""
from homework_sync.errors import InvalidInput


def parse_assignment_id(value: int | str) -> int:
    """Return ``value`` as a positive int or raise ``InvalidInput``.

    Strings must be plain decimal digits ("12abc" is rejected).
    """
    if isinstance(value, bool):
        raise InvalidInput(f"Invalid assignment ID: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdecimal():
        number = int(value.strip())
    else:
        raise InvalidInput(f"Invalid assignment ID: {value!r}")
    if number <= 0:
        raise InvalidInput(f"Invalid assignment ID: {value!r}")
    return number


def require_id(value, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Invalid {label}: {value!r}")
    return value
