"""License key generation.

Keys look like ``BC-7K2M9QX4A-P0Z8R3N6T``: a short prefix and two groups
of nine characters from an unambiguous upper-case alphabet. They are
meant to be read over the phone, not to be secret, so uniqueness is
checked against the key index rather than relied on statistically.
"""

import secrets

from entitle.core.exceptions import ConflictError
from entitle.db.repositories import SeatRepository

# No 0/O or 1/I confusion
LICENSE_KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GROUP_LENGTH = 9


def generate_license_key(prefix: str = "BC") -> str:
    """Generate one candidate key. Does not check uniqueness."""
    groups = (
        "".join(secrets.choice(LICENSE_KEY_ALPHABET) for _ in range(GROUP_LENGTH))
        for _ in range(2)
    )
    return "-".join((prefix, *groups))


async def allocate_license_key(
    seats: SeatRepository, *, prefix: str = "BC", max_attempts: int = 5
) -> str:
    """Generate a key not present in the key index.

    The unique constraint on ``seats.license_key`` still guards the insert;
    this only keeps collisions from surfacing as DuplicateError.

    Raises:
        ConflictError: If every attempt collided
    """
    for _ in range(max_attempts):
        candidate = generate_license_key(prefix)
        if not await seats.key_exists(candidate):
            return candidate
    raise ConflictError(
        f"Could not allocate a unique license key in {max_attempts} attempts",
        resource="seats",
    )
