"""Verification codes and document fingerprints.

Codes look like ``ABCDEFGH-12345``. They come from a plain PRNG: they are correlation
and lookup tokens shown to signers, not secrets. Fingerprints are an HMAC over a
canonical JSON payload of the committed state, truncated for display.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import random
import re
import string
from typing import Any, Callable, Dict, Optional

from signflow.core.settings import settings
from signflow.exceptions import CodeCollisionError
from signflow.schemas.convention import ROLE_LABELS, Convention, Role
from signflow.utils.datetime import isoformat_z

CODE_LETTERS = 8
CODE_DIGITS = 5
CODE_PATTERN = re.compile(r"^[A-Z]{8}-[0-9]{5}$")
HASH_DISPLAY_LENGTH = 12
MAX_CODE_ATTEMPTS = 5

_rng = random.Random()


def generate_code(rng: random.Random | None = None) -> str:
    rng = rng or _rng
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(CODE_LETTERS))
    digits = "".join(rng.choice(string.digits) for _ in range(CODE_DIGITS))
    return f"{letters}-{digits}"


def is_well_formed(code: str) -> bool:
    return bool(CODE_PATTERN.match(code or ""))


def issue_code(is_taken: Callable[[str], bool], rng: random.Random | None = None) -> str:
    """Generate a code not yet present in the store.

    ``is_taken`` is asked for every candidate; a collision simply draws again.
    """
    candidate = ""
    for _ in range(MAX_CODE_ATTEMPTS):
        candidate = generate_code(rng)
        if not is_taken(candidate):
            return candidate
    raise CodeCollisionError(candidate)


def sign_payload(payload: Dict[str, Any], secret: Optional[str] = None) -> str:
    key = (secret or settings.document_signing_secret).encode()
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode()
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def _display(digest: str) -> str:
    return digest[:HASH_DISPLAY_LENGTH].upper()


def _names_for(convention: Convention) -> Dict[Role, Optional[str]]:
    return {
        Role.STUDENT: convention.student_name,
        Role.PARENT: convention.guardian_name if convention.is_minor else None,
        Role.TEACHER: convention.teacher_name,
        Role.COMPANY: convention.company_rep_name,
        Role.TUTOR: convention.tutor_name or convention.tutor_last_name,
        Role.HEAD: convention.school_head_name,
    }


def certificate_payload(convention: Convention) -> Dict[str, Any]:
    names = _names_for(convention)
    return {
        "t": "c",
        "id": convention.id,
        "s": convention.student_name,
        "e": convention.company_name,
        "d": {"s": convention.start_date.isoformat(), "f": convention.end_date.isoformat()},
        "sigs": [
            {
                "n": names[role] or ROLE_LABELS[role],
                "r": ROLE_LABELS[role],
                "d": isoformat_z(convention.signatures[role].signed_at),
            }
            for role in Role
            if convention.has_signed(role)
        ],
    }


def attestation_payload(convention: Convention) -> Dict[str, Any]:
    att = convention.attestation
    return {
        "t": "a",
        "id": convention.id,
        "s": convention.student_name,
        "e": convention.company_name,
        "d": {"s": convention.start_date.isoformat(), "f": convention.end_date.isoformat()},
        "h": att.total_days,
        "sn": att.signer_name,
        "sf": att.signer_function,
        "sd": isoformat_z(att.signed_at),
    }


def certificate_hash(convention: Convention, secret: Optional[str] = None) -> str:
    return _display(sign_payload(certificate_payload(convention), secret))


def attestation_hash(convention: Convention, secret: Optional[str] = None) -> str:
    return _display(sign_payload(attestation_payload(convention), secret))
