from marketplace.lenders.base import (
    LenderClient,
    LenderOffer,
    LenderResult,
    LenderStatus,
    LenderSubmission,
    SubmissionDocument,
    SubmittedApplication,
)
from marketplace.lenders.registry import LenderClientFactory, build_lender_client

__all__ = [
    "LenderClient",
    "LenderClientFactory",
    "LenderOffer",
    "LenderResult",
    "LenderStatus",
    "LenderSubmission",
    "SubmissionDocument",
    "SubmittedApplication",
    "build_lender_client",
]
