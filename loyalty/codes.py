import secrets
import string
from typing import Callable

from .errors import CodeAllocationError

CODE_ALPHABET = string.ascii_uppercase + string.digits

CodeGenerator = Callable[[], str]


def random_code(prefix: str = "PING", length: int = 6) -> str:
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def unique_code(generate: CodeGenerator, exists: Callable[[str], bool], attempts: int) -> str:
    """Draw codes until one is not taken; a collision never overwrites the holder."""
    for _ in range(attempts):
        code = generate()
        if not exists(code):
            return code
    raise CodeAllocationError(f"Could not allocate a unique code after {attempts} attempts")
