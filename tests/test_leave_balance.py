import pytest

from leaveflow.core.exceptions import InsufficientBalanceError, NotFoundError
from leaveflow.services.leave_balance import LeaveBalanceLedger
from tests.conftest import ANNUAL_DAYS, LEAVE_YEAR


def test_ensure_covers_accepts_available_days(db_session, org):
    balance = LeaveBalanceLedger(db_session).ensure_covers(org.intern.id, org.leave_type.id, LEAVE_YEAR, ANNUAL_DAYS)
    assert balance.remaining_days == ANNUAL_DAYS


def test_ensure_covers_rejects_overdraw(db_session, org):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        LeaveBalanceLedger(db_session).ensure_covers(org.intern.id, org.leave_type.id, LEAVE_YEAR, ANNUAL_DAYS + 0.5)
    assert exc_info.value.remaining == ANNUAL_DAYS
    assert exc_info.value.error_code == "INSUFFICIENT_BALANCE"


def test_missing_balance_row_is_insufficient(db_session, org):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        LeaveBalanceLedger(db_session).ensure_covers(org.intern.id, org.leave_type.id, LEAVE_YEAR + 1, 1)
    assert exc_info.value.remaining is None


def test_debit_then_credit(db_session, org, balance_of):
    ledger = LeaveBalanceLedger(db_session)
    ledger.debit(org.intern.id, org.leave_type.id, LEAVE_YEAR, 3.5)
    db_session.commit()

    balance = balance_of(org.intern)
    assert balance.used_days == 3.5
    assert balance.remaining_days == ANNUAL_DAYS - 3.5

    ledger.credit(org.intern.id, org.leave_type.id, LEAVE_YEAR, 3.5)
    db_session.commit()
    balance = balance_of(org.intern)
    assert balance.used_days == 0.0
    assert balance.remaining_days == ANNUAL_DAYS


def test_debit_refuses_overdraw(db_session, org, balance_of):
    with pytest.raises(InsufficientBalanceError):
        LeaveBalanceLedger(db_session).debit(org.intern.id, org.leave_type.id, LEAVE_YEAR, ANNUAL_DAYS + 1)
    assert balance_of(org.intern).used_days == 0.0


def test_credit_never_drives_used_below_zero(db_session, org, balance_of):
    LeaveBalanceLedger(db_session).credit(org.intern.id, org.leave_type.id, LEAVE_YEAR, 2)
    db_session.commit()
    balance = balance_of(org.intern)
    assert balance.used_days == 0.0
    assert balance.remaining_days == ANNUAL_DAYS + 2


def test_credit_without_balance_row(db_session, org):
    with pytest.raises(NotFoundError):
        LeaveBalanceLedger(db_session).credit(org.intern.id, org.leave_type.id, LEAVE_YEAR + 1, 1)


def test_list_for_user_filters_by_year(db_session, org):
    ledger = LeaveBalanceLedger(db_session)
    assert len(ledger.list_for_user(org.intern.id)) == 1
    assert ledger.list_for_user(org.intern.id, LEAVE_YEAR + 1) == []
