from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.credit_transaction import CreditTransaction
from app.services.credits import ledger
from app.services.credits.errors import HoldConflict, InsufficientCredits
from app.services.credits.holds import DatabaseHoldManager
from app.services.credits.service import CreditService


def main() -> None:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        service = CreditService(DatabaseHoldManager(ttl_s=3600), free_tier_floor=7)
        user_id = "user-1"
        ledger.get_or_create_account(db, user_id, email="user@example.com")
        service.grant_signup_credits(db, user_id)
        assert service.get_credit_balance(db, user_id).total == 7

        hold = service.create_credit_hold(db, user_id, 1, "profile_extraction")
        assert service.get_credit_balance(db, user_id).available == 6
        try:
            service.create_credit_hold(db, user_id, 1, "message_generation")
            raise AssertionError("second hold should conflict")
        except HoldConflict:
            pass

        res = service.deduct_credits(db, user_id, 1, "profile_extraction", {"hold_id": hold.hold_id})
        assert res.new_balance == 6, res
        assert service.get_credit_balance(db, user_id).held == 0

        service.deduct_credits(db, user_id, "0.5", "message_generation")
        assert service.get_credit_balance(db, user_id).total == 5.5

        try:
            service.deduct_credits(db, user_id, 100, "email_finder")
            raise AssertionError("overdraft should fail")
        except InsufficientCredits:
            pass

        reset = service.reset_free_credits(db, user_id)
        assert reset.applied and reset.new_balance == 7, reset
        again = service.reset_free_credits(db, user_id)
        assert not again.applied, again

        rows = db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id).all()
        assert [r.transaction_type for r in rows] == ["signup", "deduction", "deduction", "reset"], rows
        assert service.audit(db, user_id).consistent
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
