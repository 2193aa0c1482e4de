import random
import string


def _random_block(length: int = 8) -> str:
    """
    Return a random string of uppercase letters and digits.
    """
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def generate_id(prefix: str = "ID") -> str:
    """
    Generate a short ID like 'USR-1F2A9C3D' or 'ID-8K2L0P9Q'.

    IMPORTANT:
    - This function is used by SQLAlchemy as a column default.
    - SQLAlchemy calls it with **zero** positional arguments,
      so it must work when called as `generate_id()`.

    IDs are unique across tenant stores in practice, which lets a super
    admin from the administrative tenant be referenced inside any other
    tenant without clashing with a local user id.
    """
    block = _random_block(8)
    if prefix:
        return f"{prefix}-{block}"
    return block


def prefixed(prefix: str):
    """Column default factory bound to a fixed prefix."""

    def _factory() -> str:
        return generate_id(prefix)

    return _factory
