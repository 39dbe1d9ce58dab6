from marketplace.models.company_document import CompanyDocument
from marketplace.models.financing_offer import FinancingOffer
from marketplace.models.funding_application import FundingApplication
from marketplace.models.lender import Lender
from marketplace.models.lender_application import LenderApplication
from marketplace.models.lender_application_event import LenderApplicationEvent
from marketplace.models.lender_document_upload import LenderDocumentUpload

__all__ = [
    "CompanyDocument",
    "FinancingOffer",
    "FundingApplication",
    "Lender",
    "LenderApplication",
    "LenderApplicationEvent",
    "LenderDocumentUpload",
]
