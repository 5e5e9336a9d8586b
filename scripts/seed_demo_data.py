"""
Seeds SQLite with a demo parking facility for local runs.

Contents:
- per-day rate of 50
- 40 registered cars with 1-2 owners each
- 60 transactions created through the change feed (so fees, status and
  tid are assigned by the transaction state machine)
- about a third of them closed, paid in full through settled counter payments
- a few canceled and a few still open overnight

Notifications are only delivered when BOT_BASE_URL is set.
"""
import sys
import os
import asyncio
import random
import uuid
from datetime import datetime, timedelta, timezone

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import engine, SessionLocal
from app import models
from app.schemas.documents import PaymentDoc, PaymentStatus, TransactionDoc
from app.services import change_feed, store
from app.services.fee import compute_fee

random.seed(42)

RATE_PER_DAY = 50.0
PROVINCES = ["BKK", "NBI", "PTE", "SPK"]
BASE_TIME = datetime.now(timezone.utc) - timedelta(days=3)


def license_number():
    return f"{random.choice('ABCDEFGHJK')}{random.choice('ABCDEFGHJK')}-{random.randint(1000, 9999)} {random.choice(PROVINCES)}"


def doc_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


async def seed(db):
    change_feed.set_rate(db, RATE_PER_DAY)

    plates = [license_number() for _ in range(40)]
    for i, plate in enumerate(plates):
        for j in range(random.choice([1, 2])):
            store.add_owner(db, plate, f"line_{i:03d}_{j}")
    db.commit()

    for i in range(60):
        plate = random.choice(plates)
        tid = doc_id("tx")
        time_in = BASE_TIME + timedelta(hours=random.uniform(0, 60))
        await change_feed.write_transaction(db, tid, TransactionDoc(
            license_number=plate,
            timestamp_in=time_in,
            image_in=f"images/{tid}/in.jpg",
            add_by="staff_seed",
        ))

        roll = random.random()
        if roll < 0.35:
            # Paid at the counter, then exit recorded
            transaction = store.get_transaction(db, tid)
            time_out = time_in + timedelta(hours=random.uniform(1, 30))
            if time_out > datetime.now(timezone.utc):
                continue
            fee = compute_fee(time_in, time_out, RATE_PER_DAY)
            await change_feed.write_payment(db, tid, doc_id("pi"), PaymentDoc(
                amount=fee - transaction.paid,
                timestamp=time_out,
                status=PaymentStatus.SUCCESS,
            ))
            await change_feed.update_transaction(db, tid, timestamp_out=time_out, is_edit=True)
        elif roll < 0.42:
            await change_feed.update_transaction(db, tid, is_cancel=True, is_edit=True)


def main():
    print("Creating database tables...")
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        existing = db.query(models.Transaction).count()
        if existing > 0:
            print(f"Database already has {existing} transactions. Skipping seed.")
            return

        print("Generating transactions...")
        asyncio.run(seed(db))

        count = db.query(models.Transaction).count()
        print(f"Successfully seeded {count} transactions.")

        # Print summary
        from sqlalchemy import func as sqlfunc
        statuses = db.query(
            models.Transaction.status,
            sqlfunc.count(models.Transaction.id)
        ).group_by(models.Transaction.status).all()
        print("\nStatus distribution:")
        for status, cnt in statuses:
            print(f"  {status}: {cnt}")

        open_count = len(store.open_transactions(db))
        print(f"\nStill in facility: {open_count}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
