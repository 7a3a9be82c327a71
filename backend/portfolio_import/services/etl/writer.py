from __future__ import annotations

import random
import threading
import time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_import.db.models.cash_operation import CashOperation
from portfolio_import.db.models.pending_order import PendingOrder
from portfolio_import.db.models.position import Position
from portfolio_import.services.etl.aliases import RecordKind
from portfolio_import.services.etl.errors import PersistenceError
from portfolio_import.services.etl.transform import Candidate

# record kind -> (model, business id column)
RECORD_MODELS = {
    RecordKind.position: (Position, "position_id"),
    RecordKind.cash_operation: (CashOperation, "operation_id"),
    RecordKind.pending_order: (PendingOrder, "order_id"),
}


class RecordIdGenerator:
    """Time-based ids: epoch ms * 10^6 + 3-digit sequence + 3-digit random."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seq = 0

    def next_id(self) -> int:
        with self._lock:
            self._seq = (self._seq + 1) % 1000
            seq = self._seq
        ms = int(time.time() * 1000)
        return ms * 1_000_000 + seq * 1000 + random.randint(0, 999)


record_ids = RecordIdGenerator()


def write_record(
    db: Session,
    candidate: Candidate,
    user_id: int,
    batch_id: int,
    ids: RecordIdGenerator | None = None,
):
    """Insert one validated record tagged with the job's batch id and owner.

    Commits per row. Any storage failure is rolled back and re-raised as
    PersistenceError so the pipeline can record it against the row.
    """
    model, id_field = RECORD_MODELS[candidate.kind]
    record_id = (ids or record_ids).next_id()
    record = model(
        user_id=user_id,
        import_batch_id=batch_id,
        **{id_field: record_id},
        **candidate.values,
    )
    try:
        db.add(record)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise PersistenceError("Duplicate record identifier", field=id_field, value=record_id) from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Cannot store record: {e.__class__.__name__}", field=id_field, value=record_id) from e
    return record
