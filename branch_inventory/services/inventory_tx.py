# FILE: branch_inventory/services/inventory_tx.py
from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from branch_inventory.core.config import settings
from branch_inventory.services.inventory_errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Unique keys a concurrent writer can race us on: the batch number series
# (count-then-insert) and the first stock record of a (branch, product).
# MySQL reports the constraint name, SQLite the columns.
RACE_KEY_MARKERS = (
    "uq_inv_product_batches_number",
    "inv_product_batches.batch_number",
    "uq_inv_branch_stock",
    "inv_branch_stocks.branch_id, inv_branch_stocks.product_id",
)


def is_unique_race(exc: IntegrityError) -> bool:
    text = str(getattr(exc, "orig", None) or exc)
    return any(marker in text for marker in RACE_KEY_MARKERS)


def run_atomic(
    db: Session,
    work: Callable[[], T],
    *,
    label: str = "inventory write",
    attempts: Optional[int] = None,
) -> T:
    """
    Run `work` and commit it as one transaction.

    `work` must re-read (and lock) everything it mutates, because a retry
    starts from a rolled-back session. A version conflict on a stock record
    or batch, or losing an insert race on a batch number or a first stock
    record, rolls back and re-runs `work`; any other error rolls back and
    propagates unchanged.
    """
    max_attempts = int(attempts or settings.INVENTORY_MAX_COMMIT_ATTEMPTS or 1)

    for attempt in range(1, max_attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning(
                "%s: version conflict on attempt %s/%s, retrying",
                label, attempt, max_attempts,
            )
        except IntegrityError as e:
            db.rollback()
            if not is_unique_race(e):
                raise
            logger.warning(
                "%s: lost insert race on attempt %s/%s, retrying: %s",
                label, attempt, max_attempts, e.orig,
            )
        except Exception:
            db.rollback()
            raise

    raise ConcurrentModificationError(
        f"{label} could not be committed after {max_attempts} attempts (concurrent modification)"
    )
