from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeLenderClient, client_factory_for, make_lender, make_lender_application
from marketplace.lenders.base import LenderOffer, LenderResult
from marketplace.schemas.lender_application import LenderApplicationStatus, OfferStatus
from marketplace.services.offers import (
    LenderAcceptanceFailedError,
    OfferAcceptanceUnsupportedError,
    OfferNotAcceptableError,
    OfferNotFoundError,
    OfferService,
)


async def _seed(lender_app_store, offer_store, *, lender_type="qred", status=LenderApplicationStatus.OFFERS_RECEIVED):
    lender = make_lender(name="Qred", lender_type=lender_type)
    offer_store.lenders[lender.id] = lender
    record = lender_app_store.add(
        make_lender_application(lender_id=lender.id, lender_reference="q-1", status=status.value)
    )
    await offer_store.insert_offers(
        lender_application_id=record.id,
        funding_application_id=record.funding_application_id,
        offers=[LenderOffer(reference="offer-1", amount=Decimal("100000"))],
    )
    offer = next(iter(offer_store.offers.values()))
    return lender, record, offer


@pytest.mark.asyncio
async def test_accept_offer_marks_offer_and_application(lender_app_store, offer_store):
    _, record, offer = await _seed(lender_app_store, offer_store)
    client = FakeLenderClient(supports_offer_acceptance=True)
    service = OfferService(offer_store, lender_app_store, client_factory_for({"qred": client}))

    accepted = await service.accept(offer.id)

    assert accepted.status == OfferStatus.ACCEPTED.value
    assert offer.status == OfferStatus.ACCEPTED.value
    assert record.status == LenderApplicationStatus.ACCEPTED.value
    assert client.accept_calls == [("q-1", "offer-1")]


@pytest.mark.asyncio
async def test_accept_unknown_offer(lender_app_store, offer_store):
    service = OfferService(offer_store, lender_app_store, client_factory_for({}))

    with pytest.raises(OfferNotFoundError):
        await service.accept(uuid4())


@pytest.mark.asyncio
async def test_accept_already_accepted_offer(lender_app_store, offer_store):
    _, _, offer = await _seed(lender_app_store, offer_store)
    offer.status = OfferStatus.ACCEPTED.value
    client = FakeLenderClient(supports_offer_acceptance=True)
    service = OfferService(offer_store, lender_app_store, client_factory_for({"qred": client}))

    with pytest.raises(OfferNotAcceptableError):
        await service.accept(offer.id)
    assert client.accept_calls == []


@pytest.mark.asyncio
async def test_accept_offer_unsupported_by_lender(lender_app_store, offer_store):
    _, _, offer = await _seed(lender_app_store, offer_store, lender_type="capital_box")
    service = OfferService(offer_store, lender_app_store, client_factory_for({"capital_box": FakeLenderClient()}))

    with pytest.raises(OfferAcceptanceUnsupportedError):
        await service.accept(offer.id)


@pytest.mark.asyncio
async def test_lender_failure_leaves_state_untouched(lender_app_store, offer_store):
    _, record, offer = await _seed(lender_app_store, offer_store)
    client = FakeLenderClient(
        supports_offer_acceptance=True,
        accept_result=LenderResult.fail("Offer expired", code="transport_error", details={"status": "EXPIRED"}),
    )
    service = OfferService(offer_store, lender_app_store, client_factory_for({"qred": client}))

    with pytest.raises(LenderAcceptanceFailedError) as exc_info:
        await service.accept(offer.id)

    assert exc_info.value.details == {"status": "EXPIRED"}
    assert offer.status == OfferStatus.OFFERED.value
    assert record.status == LenderApplicationStatus.OFFERS_RECEIVED.value
