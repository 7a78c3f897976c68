"""Restaurant onboarding and verification."""

from restaurants.service import OnboardingService, VerificationService

__all__ = [
    "OnboardingService",
    "VerificationService",
]
