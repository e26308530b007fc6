# backend/tests/unit/repositories/test_ledger_repositories.py
"""Conditional-update behaviour of the ledger repositories."""

from datetime import timedelta

from ridepay.core.enums import CaptureQueueStatus, PaymentStatus
from ridepay.repositories.factory import RepositoryFactory


class TestReferralRepository:
    def test_claim_once(self, db, make_referral, clock):
        make_referral("ONCE")
        repo = RepositoryFactory.create_referral_repository(db)

        assert repo.claim("ONCE", "rider-1", clock()) is True
        assert repo.claim("ONCE", "rider-1", clock()) is False
        db.commit()

        referral = repo.get_by_code("ONCE")
        assert referral.used is True
        assert referral.used_at is not None

    def test_claim_rejects_other_rider(self, db, make_referral, clock):
        make_referral("MINE", rider_id="rider-1")
        repo = RepositoryFactory.create_referral_repository(db)

        assert repo.claim("MINE", "rider-2", clock()) is False

    def test_unowned_code_is_claimable_by_anyone(self, db, make_referral, clock):
        make_referral("OPEN", rider_id=None)
        repo = RepositoryFactory.create_referral_repository(db)

        assert repo.claim("OPEN", "rider-7", clock()) is True

    def test_claim_rejects_expired(self, db, make_referral, clock):
        make_referral("OLD", expires_at=clock() - timedelta(minutes=1))
        repo = RepositoryFactory.create_referral_repository(db)

        assert repo.claim("OLD", "rider-1", clock()) is False

    def test_release_restores_code(self, db, make_referral, clock):
        make_referral("BACK")
        repo = RepositoryFactory.create_referral_repository(db)
        repo.claim("BACK", "rider-1", clock())
        new_expiry = clock() + timedelta(days=30)

        assert repo.release("BACK", expires_at=new_expiry) is True
        assert repo.release("BACK") is False
        db.commit()

        referral = repo.get_by_code("BACK")
        assert referral.used is False
        assert referral.used_at is None


class TestPaymentRepository:
    def test_transition_only_from_expected_status(self, db, authorize):
        payment = authorize(1000).payment_intent
        repo = RepositoryFactory.create_payment_repository(db)

        assert repo.transition_status(payment.id, [PaymentStatus.AUTHORIZED], PaymentStatus.PROCESSING) is True
        assert repo.transition_status(payment.id, [PaymentStatus.AUTHORIZED], PaymentStatus.PROCESSING) is False
        assert repo.get_by_id(payment.id).status == PaymentStatus.PROCESSING.value

    def test_transition_of_missing_row(self, db):
        repo = RepositoryFactory.create_payment_repository(db)

        assert repo.transition_status("missing", [PaymentStatus.AUTHORIZED], PaymentStatus.CANCELED) is False

    def test_lookup_by_processor_id(self, db, authorize):
        payment = authorize(1000).payment_intent
        repo = RepositoryFactory.create_payment_repository(db)

        assert repo.get_by_processor_id(payment.processor_intent_id).id == payment.id
        assert repo.get_by_processor_id("pi_unknown") is None

    def test_authorized_for_ride(self, db, authorize):
        first = authorize(1000).payment_intent
        authorize(1000, ride_id="ride-2")
        repo = RepositoryFactory.create_payment_repository(db)

        assert [p.id for p in repo.find_authorized_for_ride("ride-1")] == [first.id]


class TestCaptureQueueRepository:
    def test_duplicate_insert_returns_none(self, db, authorize):
        payment = authorize(1000).payment_intent
        repo = RepositoryFactory.create_capture_queue_repository(db)

        assert repo.insert_pending(payment.id, payment.ride_id) is not None
        db.commit()
        assert repo.insert_pending(payment.id, payment.ride_id) is None

    def test_find_due_skips_exhausted_entries(self, db, authorize):
        payment = authorize(1000).payment_intent
        repo = RepositoryFactory.create_capture_queue_repository(db)
        entry = repo.insert_pending(payment.id, payment.ride_id)
        entry.attempts = 3
        db.commit()

        assert repo.find_due(10, max_attempts=3) == []
        assert [e.id for e in repo.find_due(10, max_attempts=4)] == [entry.id]

    def test_transition_is_conditional(self, db, authorize):
        payment = authorize(1000).payment_intent
        repo = RepositoryFactory.create_capture_queue_repository(db)
        entry = repo.insert_pending(payment.id, payment.ride_id)
        db.commit()

        assert repo.transition(entry.id, CaptureQueueStatus.PENDING, CaptureQueueStatus.PROCESSING) is True
        assert repo.transition(entry.id, CaptureQueueStatus.PENDING, CaptureQueueStatus.PROCESSING) is False
