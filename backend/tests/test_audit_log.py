"""
Tests for the Audit Log.

Test Coverage:
1. Write-once entries (update and delete refused)
2. No deletes of offers, views or rejections
3. Non-decreasing timestamps per application, even when the clock goes back
4. Per-application sequence numbers and (timestamp, sequence) ordering
5. Lazy, restartable reads
"""
from datetime import timedelta

import pytest

from conftest import BANK_A, OWNER, PROFILE, T0, TERMS
from lead_auction.models import (
    ApplicationStatus, AuditEntryDB, AuditEventType, OfferDB, RejectionRecordDB, ViewRecordDB,
)


# =============================================================================
# TEST: WRITE-ONCE
# =============================================================================

class TestImmutability:
    """Audit entries and child records are never changed or removed."""

    def test_audit_entry_update_refused(self, db, live_application):
        entry = db.query(AuditEntryDB).filter(
            AuditEntryDB.application_id == live_application.application_id,
        ).first()
        entry.reason = "rewritten history"

        with pytest.raises(RuntimeError):
            db.flush()
        db.rollback()

        assert db.query(AuditEntryDB).filter(AuditEntryDB.id == entry.id).one().reason != "rewritten history"

    def test_audit_entry_delete_refused(self, db, live_application):
        entry = db.query(AuditEntryDB).first()
        db.delete(entry)

        with pytest.raises(RuntimeError):
            db.flush()
        db.rollback()

        assert db.query(AuditEntryDB).count() == 2

    @pytest.mark.parametrize("model", [OfferDB, ViewRecordDB, RejectionRecordDB])
    def test_child_records_never_deleted(self, service, db, live_application, model):
        app_id = live_application.application_id
        service.submit_offer(app_id, BANK_A.actor_id, TERMS, True, BANK_A)
        service.record_view(app_id, BANK_A.actor_id, BANK_A)
        service.reject_lead(app_id, BANK_A.actor_id, "no", BANK_A)

        db.delete(db.query(model).first())
        with pytest.raises(RuntimeError):
            db.flush()
        db.rollback()


# =============================================================================
# TEST: ORDERING
# =============================================================================

class TestOrdering:
    """Entries are ordered by (timestamp, sequence) and never go back in time."""

    def test_clock_going_backwards_is_clamped(self, service, clock, live_application):
        """An entry never precedes the previous one"""
        clock.set(T0 - timedelta(hours=1))
        service.transition(live_application.application_id, "ignored", OWNER)

        entries = service.get_application(live_application.application_id, OWNER).audit_entries
        assert entries[-1].timestamp == T0
        timestamps = [e.timestamp for e in entries]
        assert timestamps == sorted(timestamps)

    def test_sequence_breaks_timestamp_ties(self, service, live_application):
        """Same-instant entries keep insertion order"""
        app_id = live_application.application_id
        service.submit_offer(app_id, BANK_A.actor_id, TERMS, True, BANK_A)
        service.transition(app_id, "ignored", OWNER)

        entries = service.audit_log.read(app_id).all()
        assert [e.sequence for e in entries] == [1, 2, 3, 4]
        assert [e.event_type for e in entries] == [
            AuditEventType.STATUS_TRANSITION,
            AuditEventType.STATUS_TRANSITION,
            AuditEventType.OFFER_SUBMITTED,
            AuditEventType.STATUS_TRANSITION,
        ]
        assert len({e.timestamp for e in entries}) == 1

    def test_sequences_are_per_application(self, service, live_application):
        other = service.submit_application(
            {"owner_business_id": OWNER.actor_id, "financial_profile": PROFILE}, OWNER,
        )
        assert [e.sequence for e in service.audit_log.read(other.application_id)] == [1, 2]

    def test_non_transition_entries_carry_current_status(self, service, live_application):
        app_id = live_application.application_id
        service.record_view(app_id, BANK_A.actor_id, BANK_A)
        service.reject_lead(app_id, BANK_A.actor_id, "later", BANK_A)

        entry = service.audit_log.read(app_id).all()[-1]
        assert entry.event_type == AuditEventType.LEAD_REJECTED
        assert entry.from_status == entry.to_status == ApplicationStatus.LIVE_AUCTION
        assert entry.details == {"viewer_id": BANK_A.actor_id}


# =============================================================================
# TEST: READS
# =============================================================================

class TestReads:
    """read() and transitions() are lazy and restartable."""

    def test_read_is_restartable(self, service, live_application):
        app_id = live_application.application_id
        entries = service.audit_log.read(app_id)
        assert len(list(entries)) == 2

        service.transition(app_id, "ignored", OWNER)

        assert len(list(entries)) == 3
        assert entries.count() == 3

    def test_transitions_only(self, service, live_application):
        app_id = live_application.application_id
        service.submit_offer(app_id, BANK_A.actor_id, TERMS, True, BANK_A)

        transitions = service.audit_log.transitions(app_id).all()
        assert [t.to_status for t in transitions] == [ApplicationStatus.DRAFT, ApplicationStatus.LIVE_AUCTION]

    def test_last_transition_to(self, service, live_application):
        app_id = live_application.application_id
        entry = service.audit_log.last_transition_to(app_id, ApplicationStatus.LIVE_AUCTION)
        assert entry.from_status == ApplicationStatus.DRAFT
        assert service.audit_log.last_transition_to(app_id, ApplicationStatus.COMPLETED) is None
