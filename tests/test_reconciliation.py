from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import (
    FakeLenderClient,
    InMemoryRegistry,
    client_factory_for,
    make_funding_application,
    make_lender,
    make_lender_application,
)
from marketplace.lenders.base import LenderOffer, LenderResult
from marketplace.schemas.lender_application import FundingApplicationStatus, LenderApplicationStatus
from marketplace.schemas.webhook import WebhookEvent
from marketplace.services.poll_queue import CONTRACT_READY_EVENT, LOAN_DISBURSED_EVENT
from marketplace.services.reconciliation import ReconcileOutcome, WebhookReconciler


def _offer(reference: str) -> LenderOffer:
    return LenderOffer(
        reference=reference,
        product="term_loan",
        term_months=24,
        amount=Decimal("250000"),
        monthly_fee=Decimal("1.2"),
        raw={"offer_uuid": reference},
    )


@pytest.fixture
def lender():
    return make_lender()


@pytest.fixture
def client():
    return FakeLenderClient(offers=[_offer("o-1"), _offer("o-2")])


@pytest.fixture
def reconciler(lender_app_store, offer_store, scheduler, lender, client):
    return WebhookReconciler(
        store=lender_app_store,
        offers=offer_store,
        registry=InMemoryRegistry(lender),
        client_factory=client_factory_for({"capital_box": client}),
        scheduler=scheduler,
        lender_timeout=1.0,
    )


def _record(store, lender, **overrides):
    defaults = dict(lender_id=lender.id, lender_reference="cb-1")
    defaults.update(overrides)
    return store.add(make_lender_application(**defaults), lender)


@pytest.mark.asyncio
async def test_application_received_moves_pending_to_submitted(reconciler, lender_app_store, lender):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.PENDING.value)

    result = await reconciler.apply(WebhookEvent.APPLICATION_RECEIVED, "cb-1", lender_type="capital_box", payload={"event": "applicationReceived"})

    assert result.outcome is ReconcileOutcome.APPLIED
    assert record.status == LenderApplicationStatus.SUBMITTED.value
    assert lender_app_store.events[-1]["outcome"] == "applied"
    assert lender_app_store.events[-1]["source"] == "webhook"


@pytest.mark.asyncio
async def test_late_application_received_does_not_regress(reconciler, lender_app_store, lender):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.CONTRACT_READY.value)

    result = await reconciler.apply(WebhookEvent.APPLICATION_RECEIVED, "cb-1", lender_type="capital_box")

    assert result.outcome is ReconcileOutcome.DUPLICATE
    assert record.status == LenderApplicationStatus.CONTRACT_READY.value


@pytest.mark.asyncio
async def test_offers_created_ingests_offers_once(reconciler, lender_app_store, offer_store, lender, client):
    record = _record(lender_app_store, lender)

    first = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")
    second = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    assert first.outcome is ReconcileOutcome.APPLIED
    assert second.outcome is ReconcileOutcome.DUPLICATE
    assert record.status == LenderApplicationStatus.OFFERS_RECEIVED.value
    assert len(offer_store.offers) == 2
    assert client.offer_calls == ["cb-1"]


@pytest.mark.asyncio
async def test_offers_created_with_duplicate_references_stores_each_once(
    reconciler, lender_app_store, offer_store, lender, client
):
    _record(lender_app_store, lender)
    client.offers = [_offer("o-1"), _offer("o-1"), _offer("o-3")]

    await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    refs = sorted(o.lender_offer_reference for o in offer_store.offers.values())
    assert refs == ["o-1", "o-3"]


@pytest.mark.asyncio
async def test_empty_offer_fetch_sets_no_offers(reconciler, lender_app_store, lender, client):
    record = _record(lender_app_store, lender)
    client.offers = []

    result = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    assert result.status == LenderApplicationStatus.NO_OFFERS.value
    assert record.status == LenderApplicationStatus.NO_OFFERS.value


@pytest.mark.asyncio
async def test_unsuccessful_offer_fetch_sets_no_offers(reconciler, lender_app_store, lender, client):
    record = _record(lender_app_store, lender)
    client.offers_result = LenderResult.fail("HTTP 503", code="transport_error")

    await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    assert record.status == LenderApplicationStatus.NO_OFFERS.value


@pytest.mark.asyncio
async def test_offer_fetch_exception_sets_processing_failed(reconciler, lender_app_store, lender, client):
    record = _record(lender_app_store, lender)
    client.offers_exc = RuntimeError("malformed offer payload")

    result = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    assert result.status == LenderApplicationStatus.OFFER_PROCESSING_FAILED.value
    assert record.status == LenderApplicationStatus.OFFER_PROCESSING_FAILED.value
    assert record.error_details == {"message": "malformed offer payload"}


@pytest.mark.asyncio
async def test_offers_created_after_contract_does_not_refetch(reconciler, lender_app_store, lender, client):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.CONTRACT_SIGNED.value)

    result = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "cb-1", lender_type="capital_box")

    assert result.outcome is ReconcileOutcome.DUPLICATE
    assert client.offer_calls == []
    assert record.status == LenderApplicationStatus.CONTRACT_SIGNED.value


@pytest.mark.asyncio
async def test_contract_ready_publishes_notification(reconciler, lender_app_store, lender, queue):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.OFFERS_RECEIVED.value)

    await reconciler.apply(WebhookEvent.CONTRACT_READY, "cb-1", lender_type="capital_box", payload={"event": "contractReady", "uuid": "cb-1"})
    await reconciler.apply(WebhookEvent.CONTRACT_READY, "cb-1", lender_type="capital_box", payload={"event": "contractReady", "uuid": "cb-1"})

    assert record.status == LenderApplicationStatus.CONTRACT_READY.value
    events = queue.on("test:events")
    assert [e["name"] for e in events] == [CONTRACT_READY_EVENT]
    assert events[0]["data"]["lenderApplicationId"] == str(record.id)


@pytest.mark.asyncio
async def test_loan_disbursed_writes_funding_status_exactly_once(
    reconciler, lender_app_store, funding_applications, lender, queue
):
    application = make_funding_application(status=FundingApplicationStatus.SUBMITTED.value)
    funding_applications.applications[application.id] = application
    record = _record(
        lender_app_store,
        lender,
        funding_application_id=application.id,
        status=LenderApplicationStatus.CONTRACT_SIGNED.value,
    )

    first = await reconciler.apply(WebhookEvent.LOAN_DISBURSED, "cb-1", lender_type="capital_box")
    second = await reconciler.apply(WebhookEvent.LOAN_DISBURSED, "cb-1", lender_type="capital_box")

    assert first.outcome is ReconcileOutcome.APPLIED
    assert second.outcome is ReconcileOutcome.TERMINAL
    assert record.status == LenderApplicationStatus.DISBURSED.value
    assert record.next_poll_at is None
    assert application.status == FundingApplicationStatus.DISBURSED.value
    assert lender_app_store.disbursement_writes == 1
    assert [e["name"] for e in queue.on("test:events")] == [LOAN_DISBURSED_EVENT]


@pytest.mark.parametrize(
    "terminal_status",
    [
        LenderApplicationStatus.DISBURSED,
        LenderApplicationStatus.REJECTED,
        LenderApplicationStatus.WITHDRAWN,
        LenderApplicationStatus.CONTRACT_FAILED,
    ],
)
@pytest.mark.asyncio
async def test_terminal_records_are_never_overwritten(reconciler, lender_app_store, lender, terminal_status):
    record = _record(lender_app_store, lender, status=terminal_status.value, next_poll_at=None)

    for event in (WebhookEvent.APPLICATION_RECEIVED, WebhookEvent.CONTRACT_READY, WebhookEvent.OFFERS_CREATED):
        result = await reconciler.apply(event, "cb-1", lender_type="capital_box")
        assert result.outcome is ReconcileOutcome.TERMINAL

    assert record.status == terminal_status.value
    assert record.next_poll_at is None


@pytest.mark.asyncio
async def test_declined_stops_polling(reconciler, lender_app_store, lender):
    record = _record(lender_app_store, lender)

    await reconciler.apply(WebhookEvent.APPLICATION_DECLINED, "cb-1", lender_type="capital_box")

    assert record.status == LenderApplicationStatus.REJECTED.value
    assert record.next_poll_at is None


@pytest.mark.asyncio
async def test_withdrawn_stops_polling(reconciler, lender_app_store, lender):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.OFFERS_RECEIVED.value)

    await reconciler.apply(WebhookEvent.APPLICATION_WITHDRAWN, "cb-1", lender_type="capital_box")

    assert record.status == LenderApplicationStatus.WITHDRAWN.value
    assert record.next_poll_at is None


@pytest.mark.asyncio
async def test_orphan_event_logs_anomaly_and_creates_nothing(
    reconciler, lender_app_store, offer_store, reconciliation_log
):
    result = await reconciler.apply(WebhookEvent.OFFERS_CREATED, "does-not-exist", lender_type="capital_box")

    assert result.outcome is ReconcileOutcome.ORPHAN
    assert lender_app_store.records == {}
    assert offer_store.offers == {}
    assert any("does-not-exist" in r.getMessage() for r in reconciliation_log.records)
    assert lender_app_store.events[-1]["outcome"] == "orphan"
    assert lender_app_store.events[-1]["lender_application_id"] is None


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged(reconciler, lender_app_store, lender):
    record = _record(lender_app_store, lender)

    result = await reconciler.apply("somethingNew", "cb-1", lender_type="capital_box", payload={"event": "somethingNew"})

    assert result.outcome is ReconcileOutcome.UNKNOWN
    assert record.status == LenderApplicationStatus.SUBMITTED.value
    assert lender_app_store.events[-1]["event"] == "somethingNew"


@pytest.mark.parametrize("event", [WebhookEvent.OFFERS_UPDATED, WebhookEvent.BATCH_COMPLETED])
@pytest.mark.asyncio
async def test_informational_events_are_logged_only(reconciler, lender_app_store, lender, event):
    record = _record(lender_app_store, lender)

    result = await reconciler.apply(event, "cb-1", lender_type="capital_box")

    assert result.outcome is ReconcileOutcome.IGNORED
    assert record.status == LenderApplicationStatus.SUBMITTED.value


@pytest.mark.asyncio
async def test_same_status_event_is_a_noop(reconciler, lender_app_store, lender, queue):
    record = _record(lender_app_store, lender, status=LenderApplicationStatus.CONTRACT_SIGNED.value)

    result = await reconciler.apply(WebhookEvent.CONTRACT_SIGNED, "cb-1", lender_type="capital_box")

    assert result.outcome is ReconcileOutcome.DUPLICATE
    assert record.status == LenderApplicationStatus.CONTRACT_SIGNED.value
    assert queue.on("test:events") == []


@pytest.mark.asyncio
async def test_reference_owned_by_another_lender_is_orphan(
    reconciler, lender_app_store, funding_applications, lender, reconciliation_log
):
    application = make_funding_application(status=FundingApplicationStatus.SUBMITTED.value)
    funding_applications.applications[application.id] = application
    record = _record(
        lender_app_store,
        lender,
        funding_application_id=application.id,
        status=LenderApplicationStatus.CONTRACT_SIGNED.value,
    )

    declined = await reconciler.apply(WebhookEvent.APPLICATION_DECLINED, "cb-1", lender_type="qred")
    disbursed = await reconciler.apply(WebhookEvent.LOAN_DISBURSED, "cb-1", lender_type="qred")

    assert declined.outcome is ReconcileOutcome.ORPHAN
    assert disbursed.outcome is ReconcileOutcome.ORPHAN
    assert record.status == LenderApplicationStatus.CONTRACT_SIGNED.value
    assert application.status == FundingApplicationStatus.SUBMITTED.value
    assert lender_app_store.disbursement_writes == 0
    assert any("qred" in r.getMessage() and "cb-1" in r.getMessage() for r in reconciliation_log.records)


@pytest.mark.asyncio
async def test_shared_reference_only_updates_the_authenticated_lender(
    reconciler, lender_app_store, funding_applications, lender, queue
):
    qred = make_lender(name="Qred", lender_type="qred")
    cb_application = make_funding_application(status=FundingApplicationStatus.SUBMITTED.value)
    qred_application = make_funding_application(status=FundingApplicationStatus.SUBMITTED.value)
    funding_applications.applications[cb_application.id] = cb_application
    funding_applications.applications[qred_application.id] = qred_application
    cb_record = _record(
        lender_app_store,
        lender,
        lender_reference="shared-1",
        funding_application_id=cb_application.id,
        status=LenderApplicationStatus.CONTRACT_SIGNED.value,
    )
    qred_record = _record(
        lender_app_store,
        qred,
        lender_reference="shared-1",
        funding_application_id=qred_application.id,
        status=LenderApplicationStatus.CONTRACT_SIGNED.value,
    )

    result = await reconciler.apply(WebhookEvent.LOAN_DISBURSED, "shared-1", lender_type="qred")

    assert result.outcome is ReconcileOutcome.APPLIED
    assert result.lender_application_id == qred_record.id
    assert qred_record.status == LenderApplicationStatus.DISBURSED.value
    assert qred_application.status == FundingApplicationStatus.DISBURSED.value
    assert cb_record.status == LenderApplicationStatus.CONTRACT_SIGNED.value
    assert cb_application.status == FundingApplicationStatus.SUBMITTED.value
    assert [e["data"]["lenderApplicationId"] for e in queue.on("test:events")] == [str(qred_record.id)]


@pytest.mark.asyncio
async def test_apply_to_targets_the_record_not_the_reference(reconciler, lender_app_store, lender):
    other_lender_record = lender_app_store.add(
        make_lender_application(lender_reference="cb-1"), make_lender(name="Qred", lender_type="qred")
    )
    record = _record(lender_app_store, lender)

    result = await reconciler.apply_to(record.id, WebhookEvent.APPLICATION_DECLINED)

    assert result.outcome is ReconcileOutcome.APPLIED
    assert record.status == LenderApplicationStatus.REJECTED.value
    assert other_lender_record.status == LenderApplicationStatus.SUBMITTED.value
    assert lender_app_store.events[-1]["source"] == "poll"


@pytest.mark.asyncio
async def test_apply_to_missing_record_is_orphan(reconciler, lender_app_store):
    result = await reconciler.apply_to(uuid4(), WebhookEvent.APPLICATION_DECLINED)

    assert result.outcome is ReconcileOutcome.ORPHAN
    assert lender_app_store.events[-1]["lender_reference"] is None
