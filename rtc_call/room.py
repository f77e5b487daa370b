"""Room codes scoping the signaling namespace.

A room code is a human-shareable identifier of the form ``xxx-xxxx-xxx``
(three lowercase alphabetic groups of length 3, 4 and 3). Both peers of a
call must use the same code; the relay routes signaling messages only between
members of the same room.
"""

import re
import secrets
from typing import Callable, Optional

from loguru import logger

ROOM_CODE_PATTERN = re.compile(r"^[a-z]{3}-[a-z]{4}-[a-z]{3}$")
ROOM_CODE_GROUPS = (3, 4, 3)
ROOM_CODE_SEPARATOR = "-"
ALPHABET = "abcdefghijklmnopqrstuvwxyz"


def is_valid_room_code(code: str) -> bool:
    """Check whether a string is a well-formed room code.

    Args:
        code: Candidate room code.

    Returns:
        True if the code matches ``xxx-xxxx-xxx``, False otherwise.

    Example:
        >>> is_valid_room_code("abc-defg-hij")
        True
        >>> is_valid_room_code("ABC-defg-hij")
        False
    """
    return bool(code) and ROOM_CODE_PATTERN.fullmatch(code) is not None


def generate_random_alpha_string(separator: str, *groups: int) -> str:
    """Generate random lowercase letter groups joined by a separator.

    Each letter is drawn independently and uniformly from ``a-z``.

    Args:
        separator: String placed between groups.
        *groups: Length of each group, in order.

    Returns:
        The joined string.

    Example:
        >>> len(generate_random_alpha_string("-", 3, 4, 3))
        12
    """
    return separator.join(
        "".join(secrets.choice(ALPHABET) for _ in range(length)) for length in groups
    )


def generate_room_code() -> str:
    """Generate a fresh random room code."""
    return generate_random_alpha_string(ROOM_CODE_SEPARATOR, *ROOM_CODE_GROUPS)


def resolve_room_code(
    raw_hash: Optional[str], publish: Optional[Callable[[str], None]] = None
) -> str:
    """Resolve a user-supplied room code, generating one if it is unusable.

    A leading ``#`` (as found in a URL fragment or an invite link) is stripped
    before validation. Valid codes are returned verbatim so that rejoining the
    same room is idempotent.

    Args:
        raw_hash: The code as typed or pasted by the user. May be None.
        publish: Optional callback invoked with a newly generated code so the
            caller can make it shareable. Not called for reused codes.

    Returns:
        A valid room code.
    """
    code = (raw_hash or "").strip()
    if code.startswith("#"):
        code = code[1:]

    if is_valid_room_code(code):
        logger.info(f"Checked existing room code '{code}'")
        return code

    code = generate_room_code()
    logger.info(f"Created new room code '{code}'")
    if publish is not None:
        publish(code)
    return code


class RoomCode(str):
    """A validated room code.

    Constructing a RoomCode from an invalid string generates a new random code
    instead of failing, mirroring :func:`resolve_room_code`.
    """

    def __new__(cls, raw_hash: Optional[str] = None):
        return super().__new__(cls, resolve_room_code(raw_hash))

    @property
    def namespace(self) -> str:
        """Path under which the relay scopes this room."""
        return f"/{self}"
