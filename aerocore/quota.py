import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Tuple

from .config import DEFAULT_PLAN, plan_ceiling
from .db import write_transaction
from .errors import InvalidStateTransition, QuotaExceeded
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationToken:
    token: str
    account_id: str
    period_start: str


def month_window(now: datetime) -> Tuple[datetime, datetime]:
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


class QuotaLedger:
    """Per-account monthly scan credits.

    A reservation holds a slot while an extraction is in flight. ``commit``
    turns it into consumption, ``release`` gives it back. Periods roll over
    lazily: the next ledger access after the boundary opens a new period.
    """

    def __init__(self, db_path=None, clock: Callable[[], datetime] = datetime.utcnow):
        self.db_path = db_path
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    def _ceiling(self, con, account_id: str) -> int:
        row = con.execute("SELECT plan FROM account WHERE id=?", (account_id,)).fetchone()
        return plan_ceiling(row["plan"] if row else DEFAULT_PLAN)

    def _current_period(self, con, account_id: str):
        start, end = month_window(self.clock())
        start_iso, end_iso = start.isoformat(), end.isoformat()
        row = con.execute(
            "SELECT * FROM quota_period WHERE account_id=? AND period_start=?",
            (account_id, start_iso),
        ).fetchone()
        if row:
            # plan changes take effect mid-period, never below current usage
            ceiling = max(self._ceiling(con, account_id), row["consumed"] + row["reserved"])
            if ceiling == row["ceiling"]:
                return row
            con.execute(
                "UPDATE quota_period SET ceiling=? WHERE account_id=? AND period_start=?",
                (ceiling, account_id, start_iso),
            )
            logger.info(f"Quota ceiling for account {account_id} changed {row['ceiling']} -> {ceiling}")
            return con.execute(
                "SELECT * FROM quota_period WHERE account_id=? AND period_start=?",
                (account_id, start_iso),
            ).fetchone()
        con.execute(
            "INSERT INTO quota_period(account_id, period_start, period_end, ceiling) VALUES (?,?,?,?)",
            (account_id, start_iso, end_iso, self._ceiling(con, account_id)),
        )
        logger.info(f"Opened quota period {start_iso} for account {account_id}")
        return con.execute(
            "SELECT * FROM quota_period WHERE account_id=? AND period_start=?",
            (account_id, start_iso),
        ).fetchone()

    def reserve(self, account_id: str) -> ReservationToken:
        with self._lock_for(account_id), write_transaction(self.db_path) as con:
            period = self._current_period(con, account_id)
            if period["consumed"] + period["reserved"] >= period["ceiling"]:
                logger.warning(
                    f"Scan quota reached for account {account_id}: "
                    f"{period['consumed']}+{period['reserved']}/{period['ceiling']}"
                )
                raise QuotaExceeded(
                    "Scan limit reached for the current period",
                    period_end=period["period_end"],
                    ceiling=period["ceiling"],
                )
            token = ReservationToken(secrets.token_hex(16), account_id, period["period_start"])
            con.execute(
                "UPDATE quota_period SET reserved = reserved + 1 WHERE account_id=? AND period_start=?",
                (account_id, token.period_start),
            )
            con.execute(
                "INSERT INTO quota_reservation(token, account_id, period_start, status, created_at) "
                "VALUES (?,?,?, 'reserved', ?)",
                (token.token, account_id, token.period_start, utc_now_iso(self.clock())),
            )
            return token

    def _settle(self, token: ReservationToken, status: str) -> None:
        with self._lock_for(token.account_id), write_transaction(self.db_path) as con:
            cur = con.execute(
                "UPDATE quota_reservation SET status=?, settled_at=? WHERE token=? AND status='reserved'",
                (status, utc_now_iso(self.clock()), token.token),
            )
            if cur.rowcount != 1:
                raise InvalidStateTransition(
                    f"Reservation {token.token} is not pending", token=token.token, requested=status
                )
            consumed_delta = 1 if status == "committed" else 0
            con.execute(
                "UPDATE quota_period SET reserved = reserved - 1, consumed = consumed + ? "
                "WHERE account_id=? AND period_start=?",
                (consumed_delta, token.account_id, token.period_start),
            )
        logger.info(f"Reservation {token.token} {status} for account {token.account_id}")

    def commit(self, token: ReservationToken) -> None:
        self._settle(token, "committed")

    def release(self, token: ReservationToken) -> None:
        self._settle(token, "released")

    def status(self, account_id: str) -> Dict[str, object]:
        with self._lock_for(account_id), write_transaction(self.db_path) as con:
            period = self._current_period(con, account_id)
        return {
            "consumed": period["consumed"],
            "reserved": period["reserved"],
            "ceiling": period["ceiling"],
            "remaining": max(period["ceiling"] - period["consumed"] - period["reserved"], 0),
            "period_start": period["period_start"],
            "period_end": period["period_end"],
        }

