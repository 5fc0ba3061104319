"""
Tests for the Offer Ledger.

Test Coverage:
1. Auction window boundary (offers just before / just after the deadline)
2. Commission acknowledgement (no row without fee_accepted)
3. One offer per bidder per application, including racing submits
4. Terms validation and bidder authorization
5. Offer reads: ordering, restartable iteration, counts
6. Offer validity period
"""
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import ADMIN, BANK_A, BANK_B, BANK_C, OWNER, T0, TERMS
from lead_auction.models import ApplicationStatus, AuditEventType, OfferDB, OfferStatus
from lead_auction.services.auction import (
    AuctionClosed, AuthorizationError, DuplicateOffer, FeeNotAccepted,
    NotFoundError, StateConflict, ValidationError,
)


def _offer(service, application, actor, **overrides):
    kwargs = {"terms": TERMS, "fee_accepted": True}
    kwargs.update(overrides)
    return service.submit_offer(application.application_id, actor.actor_id, actor=actor, **kwargs)


# =============================================================================
# TEST: AUCTION WINDOW
# =============================================================================

class TestAuctionWindow:
    """Offers are only accepted while the window is open."""

    def test_offer_just_before_deadline(self, service, clock, live_application):
        """T+47h59m → offer accepted"""
        clock.set(T0 + timedelta(hours=47, minutes=59))
        offer = _offer(service, live_application, BANK_A)
        assert offer.status == OfferStatus.SUBMITTED
        assert offer.submitted_at == T0 + timedelta(hours=47, minutes=59)

    def test_offer_just_after_deadline(self, service, clock, live_application):
        """T+48h01m → AuctionClosed, application expired by system"""
        clock.set(T0 + timedelta(hours=48, minutes=1))
        with pytest.raises(AuctionClosed):
            _offer(service, live_application, BANK_A)

        projection = service.get_application(live_application.application_id, OWNER)
        assert projection.application.status == ApplicationStatus.EXPIRED
        assert projection.offers == []
        assert projection.audit_entries[-1].actor == "system"

    def test_offer_exactly_at_deadline(self, service, clock, live_application):
        """now == auction_end_time is already closed"""
        clock.set(live_application.auction_end_time)
        with pytest.raises(AuctionClosed):
            _offer(service, live_application, BANK_A)

    def test_offer_on_withdrawn_application(self, service, live_application):
        service.transition(live_application.application_id, "ignored", OWNER)
        with pytest.raises(AuctionClosed):
            _offer(service, live_application, BANK_A)

    def test_offer_on_unknown_application(self, service):
        with pytest.raises(NotFoundError):
            service.submit_offer("missing", BANK_A.actor_id, TERMS, True, BANK_A)


# =============================================================================
# TEST: COMMISSION ACKNOWLEDGEMENT
# =============================================================================

class TestFeeAcceptance:
    """The platform commission must be accepted explicitly."""

    @pytest.mark.parametrize("fee_accepted", [False, None, "true", 1])
    def test_fee_not_accepted(self, service, db, live_application, fee_accepted):
        """Anything but True → FeeNotAccepted, no Offer row"""
        with pytest.raises(FeeNotAccepted):
            _offer(service, live_application, BANK_A, fee_accepted=fee_accepted)

        assert db.query(OfferDB).count() == 0

    def test_fee_not_accepted_is_a_state_conflict(self):
        assert issubclass(FeeNotAccepted, StateConflict)

    def test_closed_auction_reported_before_fee(self, service, clock, live_application):
        """A closed window wins over a missing commission acknowledgement"""
        clock.advance(hours=49)
        with pytest.raises(AuctionClosed):
            _offer(service, live_application, BANK_A, fee_accepted=False)


# =============================================================================
# TEST: ONE OFFER PER BIDDER
# =============================================================================

class TestDuplicateOffers:
    """At most one offer per (application, bidder)."""

    def test_second_offer_from_same_bidder(self, service, db, live_application):
        _offer(service, live_application, BANK_A)
        with pytest.raises(DuplicateOffer):
            _offer(service, live_application, BANK_A, terms={**TERMS, "interest_rate": 6.0})

        assert db.query(OfferDB).filter(OfferDB.bidder_id == BANK_A.actor_id).count() == 1

    def test_parallel_offers_from_same_bidder(self, make_service, live_application, db):
        """Four racing submits for one bank → exactly one offer"""
        services = [make_service() for _ in range(4)]
        barrier = threading.Barrier(4)
        outcomes = []
        outcomes_lock = threading.Lock()

        def submit(service):
            barrier.wait()
            try:
                _offer(service, live_application, BANK_A)
                result = "submitted"
            except DuplicateOffer:
                result = "duplicate"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=submit, args=(s,)) for s in services]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["duplicate", "duplicate", "duplicate", "submitted"]
        assert db.query(OfferDB).filter(
            OfferDB.application_id == live_application.application_id,
            OfferDB.bidder_id == BANK_A.actor_id,
        ).count() == 1

    def test_unique_constraint_reported_as_duplicate(self, service, db, live_application):
        """A pair that slips past the lookup is stopped by the constraint"""
        _offer(service, live_application, BANK_A)

        with patch.object(service.offers, "_find", return_value=None):
            with pytest.raises(DuplicateOffer) as exc_info:
                _offer(service, live_application, BANK_A)

        assert exc_info.value.details == {
            "application_id": live_application.application_id,
            "bidder_id": BANK_A.actor_id,
        }
        assert db.query(OfferDB).filter(OfferDB.bidder_id == BANK_A.actor_id).count() == 1
        assert service.offers.count(live_application.application_id) == 1

    def test_different_bidders_may_all_bid(self, service, live_application):
        for bank in (BANK_A, BANK_B, BANK_C):
            _offer(service, live_application, bank)
        assert service.offers.count(live_application.application_id) == 3


# =============================================================================
# TEST: VALIDATION AND AUTHORIZATION
# =============================================================================

class TestOfferValidation:
    """Terms are validated before the application is touched."""

    def test_non_positive_amount(self, service, live_application):
        with pytest.raises(ValidationError) as exc_info:
            _offer(service, live_application, BANK_A, terms={**TERMS, "approved_amount": 0})
        assert exc_info.value.details["errors"][0]["loc"] == ["approved_amount"]

    def test_missing_installment(self, service, live_application):
        terms = {k: v for k, v in TERMS.items() if k != "monthly_installment"}
        with pytest.raises(ValidationError):
            _offer(service, live_application, BANK_A, terms=terms)

    def test_optional_terms_stored(self, service, live_application):
        offer = _offer(
            service, live_application, BANK_A,
            terms={**TERMS, "grace_period_months": 3, "relationship_manager": "Sara K."},
        )
        assert offer.terms["grace_period_months"] == 3
        assert offer.terms["relationship_manager"] == "Sara K."

    def test_bank_cannot_bid_as_another_bank(self, service, live_application):
        with pytest.raises(AuthorizationError):
            service.submit_offer(live_application.application_id, BANK_B.actor_id, TERMS, True, BANK_A)

    def test_business_cannot_bid(self, service, live_application):
        with pytest.raises(AuthorizationError):
            service.submit_offer(live_application.application_id, OWNER.actor_id, TERMS, True, OWNER)

    def test_admin_may_place_offer_for_bank(self, service, live_application):
        offer = service.submit_offer(live_application.application_id, BANK_A.actor_id, TERMS, True, ADMIN)
        assert offer.bidder_id == BANK_A.actor_id

    def test_file_reference(self, service, live_application):
        offer = _offer(
            service, live_application, BANK_A,
            file_ref={"name": "offer.pdf", "mimetype": "application/pdf", "content_handle": "blob://o1"},
        )
        assert offer.file_ref.name == "offer.pdf"


# =============================================================================
# TEST: READS
# =============================================================================

class TestOfferReads:
    """list() is lazy, ordered and restartable."""

    def test_list_ordered_by_submission(self, service, clock, live_application):
        for bank in (BANK_C, BANK_A, BANK_B):
            _offer(service, live_application, bank)
            clock.advance(minutes=10)

        offers = service.offers.list(live_application.application_id)
        assert [o.bidder_id for o in offers] == [BANK_C.actor_id, BANK_A.actor_id, BANK_B.actor_id]

    def test_list_is_restartable(self, service, live_application):
        offers = service.offers.list(live_application.application_id)
        assert list(offers) == []

        _offer(service, live_application, BANK_A)

        # Each iteration re-queries
        assert len(list(offers)) == 1
        assert len(list(offers)) == 1
        assert offers.count() == 1

    def test_list_unknown_application(self, service):
        with pytest.raises(NotFoundError):
            service.offers.list("missing")

    def test_get_unknown_offer(self, service):
        with pytest.raises(NotFoundError):
            service.offers.get("missing")

    def test_bidder_offers(self, service, live_application):
        _offer(service, live_application, BANK_A)
        mine = service.bidder_offers(BANK_A.actor_id, BANK_A)
        assert [o.application_id for o in mine] == [live_application.application_id]

        with pytest.raises(AuthorizationError):
            service.bidder_offers(BANK_A.actor_id, BANK_B)


# =============================================================================
# TEST: OFFER VALIDITY AND AUDIT
# =============================================================================

class TestOfferRecords:
    """Offer metadata and the audit trail of submissions."""

    def test_offer_valid_for_thirty_days(self, service, live_application):
        offer = _offer(service, live_application, BANK_A)
        assert offer.expires_at == offer.submitted_at + timedelta(days=30)

    def test_submission_audited(self, service, live_application):
        offer = _offer(service, live_application, BANK_A)

        entry = service.get_application(live_application.application_id, OWNER).audit_entries[-1]
        assert entry.event_type == AuditEventType.OFFER_SUBMITTED
        assert entry.offer_id == offer.offer_id
        assert entry.from_status == entry.to_status == ApplicationStatus.LIVE_AUCTION
