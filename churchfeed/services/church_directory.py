"""Church directory: church code generation and lookup."""
import random
import re
import secrets
import string
from typing import Callable

from sqlalchemy.orm import Session

from churchfeed.models.church import Church, CHURCH_CODE_LENGTH

CHURCH_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CHURCH_CODE_RE = re.compile(rf"^[A-Z0-9]{{{CHURCH_CODE_LENGTH}}}$")


class CodeGenerationExhaustedError(Exception):
    """Every generated church code collided with an existing one."""

    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique church code after {attempts} attempts")
        self.attempts = attempts


def generate_church_code(rng: random.Random | None = None) -> str:
    if rng is not None:
        return "".join(rng.choice(CHURCH_CODE_ALPHABET) for _ in range(CHURCH_CODE_LENGTH))
    return "".join(secrets.choice(CHURCH_CODE_ALPHABET) for _ in range(CHURCH_CODE_LENGTH))


def normalize_church_code(code: str | None) -> str:
    return (code or "").strip().upper()


def is_valid_church_code(code: str | None) -> bool:
    return bool(code) and bool(_CHURCH_CODE_RE.match(code))


def generate_unique_church_code(
    exists: Callable[[str], bool],
    max_attempts: int = 10,
    rng: random.Random | None = None,
) -> str:
    """Generate codes until one is not taken according to exists(code)."""
    for _ in range(max(1, max_attempts)):
        code = generate_church_code(rng)
        if not exists(code):
            return code
    raise CodeGenerationExhaustedError(max(1, max_attempts))


def church_code_exists(db: Session, code: str) -> bool:
    return db.query(Church.id).filter(Church.church_code == code).first() is not None


def get_church_by_code(db: Session, code: str | None) -> Church | None:
    code = normalize_church_code(code)
    if not is_valid_church_code(code):
        return None
    return db.query(Church).filter(Church.church_code == code).first()


def get_church_branches(db: Session, hq_id: int) -> list[Church]:
    return db.query(Church).filter(Church.parent_hq_id == hq_id).order_by(Church.name).all()
