"""Offer acceptance endpoint (authenticated by the emailed offer token)."""

from fastapi import APIRouter, Depends

from app.core.errors import OnboardingError
from app.models.onboarding import OfferAcceptance
from app.routers.deps import http_error
from app.services.factory import get_onboarding_service
from app.services.onboarding import OnboardingService

router = APIRouter()


@router.post("/{token}/accept", response_model=OfferAcceptance)
def accept_offer(
    token: str,
    service: OnboardingService = Depends(get_onboarding_service),
) -> OfferAcceptance:
    try:
        return service.accept_offer(token)
    except OnboardingError as exc:
        raise http_error(exc) from exc
