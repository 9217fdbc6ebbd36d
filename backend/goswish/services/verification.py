"""In-person verification codes exchanged at the door.

When the cleaner arrives, two independent 4-digit codes are minted: one shown
to the customer and one shown to the cleaner. Each party reads their code out
loud and the other party types it into their own session. Work can only start
once both sides have entered the code they were told, so neither party can
start a job alone.
"""

import re
import secrets
from typing import Optional, Tuple

from goswish.models import VerificationCodes
from goswish.services.document_store import StoreValidationError, utc_now

CODE_LENGTH = 4
VERIFIER_ROLES = ("customer", "cleaner")

_CODE_PATTERN = re.compile(rf"^\d{{{CODE_LENGTH}}}$")


def mint_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def mint_code_pair() -> Tuple[str, str]:
    customer_code = mint_code()
    cleaner_code = mint_code()
    while cleaner_code == customer_code:
        cleaner_code = mint_code()
    return customer_code, cleaner_code


def new_verification_codes() -> VerificationCodes:
    customer_code, cleaner_code = mint_code_pair()
    return VerificationCodes(
        customer_code=customer_code,
        cleaner_code=cleaner_code,
        customer_verified=False,
        cleaner_verified=False,
        generated_at=utc_now(),
    )


def validate_role(role: str) -> str:
    if role not in VERIFIER_ROLES:
        raise StoreValidationError(f"Invalid verifier role: {role}")
    return role


def validate_code(code: Optional[str]) -> str:
    value = (code or "").strip()
    if not _CODE_PATTERN.match(value):
        raise StoreValidationError(f"Verification code must be exactly {CODE_LENGTH} digits")
    return value


def expected_code(codes: VerificationCodes, role: str) -> str:
    # Each party enters the code shown to the other party.
    return codes.cleaner_code if role == "customer" else codes.customer_code


def is_verified(codes: VerificationCodes, role: str) -> bool:
    return codes.customer_verified if role == "customer" else codes.cleaner_verified


def mark_verified(codes: VerificationCodes, role: str) -> VerificationCodes:
    flag = "customer_verified" if role == "customer" else "cleaner_verified"
    return codes.model_copy(update={flag: True})


def both_verified(codes: Optional[VerificationCodes]) -> bool:
    return codes is not None and codes.customer_verified and codes.cleaner_verified
