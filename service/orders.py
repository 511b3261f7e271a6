"""Buy/sell execution against a user's holdings and cash balance.

The holding change, the balance change and the order row are written in one
commit. Orders for the same user are serialised with an in-process lock and
the touched rows are selected ``FOR UPDATE`` so databases with row locks
serialise them across processes too. Every precondition is checked before
anything is written.
"""
import logging
import math
import threading
import weakref
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import NotFound, OrderRejected
from models import Holding, Order, User

log = logging.getLogger(__name__)

BUY = "buy"
SELL = "sell"
MODES = (BUY, SELL)
EXECUTED = "executed"


@dataclass
class ExecutedOrder:
    order: Order
    price: float
    balance: float


class _UserLock:
    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


class UserLocks:
    """One lock per user id, created on first use and dropped once unreferenced."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def __call__(self, user_id) -> _UserLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = _UserLock()
            return lock


class OrderExecutor:
    def __init__(self, quotes, locks: UserLocks = None):
        self.quotes = quotes
        self.locks = locks or UserLocks()

    def execute(self, db: Session, user_id: int, symbol: str, qty: int, mode: str) -> ExecutedOrder:
        sym = (symbol or "").upper().strip()
        if not sym or qty is None or not mode:
            raise OrderRejected("Missing order parameters")
        if mode not in MODES:
            raise OrderRejected("Invalid order mode")
        if qty <= 0:
            raise OrderRejected("Invalid quantity")

        quote = self.quotes.fetch_quote(sym)
        if quote is None:
            raise OrderRejected(f"No data available for symbol: {sym}")
        price = float(quote.price)
        if not math.isfinite(price) or price <= 0:
            raise OrderRejected("Unable to fetch valid stock price")

        with self.locks(user_id):
            try:
                order, balance = self._apply(db, user_id, sym, qty, mode, price)
                db.commit()
            except Exception:
                db.rollback()
                raise

        db.refresh(order)
        log.info("user %s %s %d %s @ %.2f", user_id, mode, qty, sym, price)
        return ExecutedOrder(order=order, price=price, balance=balance)

    def _apply(self, db, user_id, sym, qty, mode, price):
        user = db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")

        holding = db.execute(
            select(Holding)
            .where(Holding.user_id == user_id, Holding.symbol == sym)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        balance = float(user.balance)

        if mode == BUY:
            cost = qty * price
            if balance < cost:
                log.info("user %s rejected: insufficient funds for %d %s", user_id, qty, sym)
                raise OrderRejected("Insufficient funds")
            if holding is None:
                db.add(Holding(user_id=user_id, symbol=sym, quantity=qty, average_price=price))
            else:
                total_cost = holding.quantity * float(holding.average_price) + cost
                new_quantity = holding.quantity + qty
                holding.quantity = new_quantity
                holding.average_price = total_cost / new_quantity
            balance -= cost
        else:
            if holding is None or holding.quantity < qty:
                log.info("user %s rejected: insufficient holdings for %d %s", user_id, qty, sym)
                raise OrderRejected("Insufficient holdings to sell")
            holding.quantity -= qty
            if holding.quantity == 0:
                db.delete(holding)
            balance += qty * price

        user.balance = balance
        order = Order(user_id=user_id, symbol=sym, qty=qty, price=price, mode=mode, status=EXECUTED)
        db.add(order)
        return order, balance
