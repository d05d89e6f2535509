"""
Leave Balance Ledger

Per (user, leave type, year) day counts. Debits happen once, when a request
reaches its final approval; credits happen when an approved request is
deleted. Neither method commits.
"""
from typing import List, Optional

from leaveflow.core.exceptions import InsufficientBalanceError, NotFoundError
from leaveflow.models.leave_balance import LeaveBalance
from leaveflow.services.base import BaseService


class LeaveBalanceLedger(BaseService):

    def get(self, user_id: int, leave_type_id: int, year: int, for_update: bool = False) -> Optional[LeaveBalance]:
        query = self.db.query(LeaveBalance).filter(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.populate_existing().with_for_update()
        return query.first()

    def list_for_user(self, user_id: int, year: Optional[int] = None) -> List[LeaveBalance]:
        query = self.db.query(LeaveBalance).filter(LeaveBalance.user_id == user_id)
        if year is not None:
            query = query.filter(LeaveBalance.year == year)
        return query.order_by(LeaveBalance.year.desc(), LeaveBalance.leave_type_id).all()

    def ensure_covers(self, user_id: int, leave_type_id: int, year: int, days: float) -> LeaveBalance:
        """Raise InsufficientBalanceError unless `days` fit in the remaining balance."""
        balance = self.get(user_id, leave_type_id, year)
        if balance is None:
            raise InsufficientBalanceError(days, None, {"user_id": user_id, "leave_type_id": leave_type_id, "year": year})
        if balance.remaining_days < days:
            raise InsufficientBalanceError(days, balance.remaining_days)
        return balance

    def debit(self, user_id: int, leave_type_id: int, year: int, days: float) -> LeaveBalance:
        balance = self.get(user_id, leave_type_id, year, for_update=True)
        if balance is None:
            raise InsufficientBalanceError(days, None, {"user_id": user_id, "leave_type_id": leave_type_id, "year": year})
        if balance.remaining_days < days:
            raise InsufficientBalanceError(days, balance.remaining_days)

        balance.used_days = (balance.used_days or 0.0) + days
        balance.remaining_days = balance.remaining_days - days
        self.db.flush()
        self.log_info(
            f"Debited {days} day(s) from user {user_id} balance",
            leave_type_id=leave_type_id, year=year, remaining_days=balance.remaining_days
        )
        return balance

    def credit(self, user_id: int, leave_type_id: int, year: int, days: float) -> LeaveBalance:
        balance = self.get(user_id, leave_type_id, year, for_update=True)
        if balance is None:
            raise NotFoundError("LeaveBalance", f"{user_id}/{leave_type_id}/{year}")

        balance.used_days = max(0.0, (balance.used_days or 0.0) - days)
        balance.remaining_days = (balance.remaining_days or 0.0) + days
        self.db.flush()
        self.log_info(
            f"Credited {days} day(s) back to user {user_id} balance",
            leave_type_id=leave_type_id, year=year, remaining_days=balance.remaining_days
        )
        return balance
