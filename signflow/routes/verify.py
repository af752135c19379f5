from fastapi import APIRouter, Depends

from signflow.exceptions import NotFoundException
from signflow.schemas.workflow import VerificationOut
from signflow.services.factory import ConventionServices, get_services

router = APIRouter(prefix="/verify", tags=["Verification"])


@router.get("/{code}", response_model=VerificationOut)
def verify_code(code: str, services: ConventionServices = Depends(get_services)):
    """Public lookup of a verification code or document fingerprint. No authentication."""
    match = services.resolver.resolve(code)
    if match is None:
        raise NotFoundException("No document carries this verification code")
    convention = match.convention
    signed_at = None
    if match.role is not None:
        signed_at = convention.signatures[match.role].signed_at
    elif match.kind in ("attestation", "attestation_hash"):
        signed_at = convention.attestation.signed_at
    return VerificationOut(
        valid=True,
        convention_id=convention.id,
        kind=match.kind,
        role=match.role,
        superseded=match.superseded,
        status=convention.status,
        student_name=convention.student_name,
        company_name=convention.company_name,
        start_date=convention.start_date,
        end_date=convention.end_date,
        signed_at=signed_at,
    )
