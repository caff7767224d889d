"""
Fee ledger: obligations with append-only payment histories.

Payments against the same obligation are serialized by a per-obligation lock
and the due balance is re-read inside it, so two racing payments can never
together exceed what is owed. Settlement status is never stored; it is derived
from the balance and the clock each time it is asked for.
"""

import threading
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from ..core.entities import FeeObligation, Payment, Number, ZERO, to_decimal, coerce_enum
from ..core.enums import EntityKind, FeeStatus, FeeType, PaymentMode
from ..core.exceptions import HasPaymentsError, NotFoundError
from ..core.interfaces import Clock, RecordStore, SystemClock
from ..persistence.repositories import FeeObligationRepository, StudentRepository
from .concurrency_manager import ConcurrencyManager


def fee_resource(obligation_id: str) -> str:
    return f"fee:{obligation_id}"


class FeeLedgerService:
    """Service owning fee obligations and their payments."""

    def __init__(self, store: RecordStore, concurrency_manager: ConcurrencyManager,
                 clock: Optional[Clock] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._clock = clock or SystemClock()
        self._obligations = FeeObligationRepository(store)
        self._students = StudentRepository(store)

    @property
    def clock(self) -> Clock:
        return self._clock

    def create_obligation(self, student_id: str, term: str, fee_type: Union[FeeType, str],
                          total_amount: Number, due_date: Union[date, datetime, str],
                          discount: Number = 0, late_fee: Number = 0,
                          remarks: Optional[str] = None) -> FeeObligation:
        """Open a new obligation with an empty payment history.

        Raises:
            NotFoundError: the student does not exist.
            InvalidAmountError: total, discount or late fee is negative.
        """
        self._students.require(student_id)
        obligation = FeeObligation(
            student_id=student_id,
            term=term,
            fee_type=fee_type,
            total_amount=total_amount,
            due_date=due_date,
            discount=discount,
            late_fee=late_fee,
            remarks=remarks,
        )
        return self._obligations.add(obligation)

    def add_payment(self, obligation_id: str, amount: Number, mode: Union[PaymentMode, str],
                    reference: Optional[str] = None, remarks: Optional[str] = None,
                    received_by: Optional[str] = None) -> FeeObligation:
        """Record a payment against the current due balance.

        Payments larger than the outstanding balance are rejected instead of
        being kept as a credit.

        Raises:
            NotFoundError: the obligation does not exist.
            InvalidAmountError: amount is not a positive number.
            OverPaymentError: amount exceeds the current due amount.
            ConflictError: the update could not be applied after bounded retries.
        """
        value = to_decimal(amount)
        payment_mode = coerce_enum(PaymentMode, mode, "payment_mode")

        def attempt() -> FeeObligation:
            with self._lock(obligation_id):
                obligation = self._obligations.require(obligation_id)
                expected = obligation.version
                obligation.apply_payment(Payment(
                    amount=value,
                    mode=payment_mode,
                    paid_at=self._clock.now(),
                    reference=reference,
                    remarks=remarks,
                    received_by=received_by,
                ))
                self._store.commit([(obligation, expected)])
                return obligation

        return self._concurrency_manager.execute_with_retry(attempt)

    def update_obligation(self, obligation_id: str, total_amount: Optional[Number] = None,
                          due_date: Optional[Union[date, datetime, str]] = None,
                          discount: Optional[Number] = None, late_fee: Optional[Number] = None,
                          remarks: Optional[str] = None) -> FeeObligation:
        """Revise the editable terms of an obligation. Payments are kept as they are."""
        def attempt() -> FeeObligation:
            with self._lock(obligation_id):
                obligation = self._obligations.require(obligation_id)
                expected = obligation.version
                obligation.revise(total_amount=total_amount, due_date=due_date,
                                  discount=discount, late_fee=late_fee, remarks=remarks)
                self._store.commit([(obligation, expected)])
                return obligation

        return self._concurrency_manager.execute_with_retry(attempt)

    def delete_obligation(self, obligation_id: str) -> None:
        """Delete an obligation that has no payments.

        Raises:
            NotFoundError: the obligation does not exist.
            HasPaymentsError: money has already been paid against it.
        """
        def attempt() -> None:
            with self._lock(obligation_id):
                obligation = self._obligations.require(obligation_id)
                if obligation.paid_amount > ZERO:
                    raise HasPaymentsError(
                        "Cannot delete a fee obligation with payments; refund first",
                        details={'obligation_id': obligation_id,
                                 'paid_amount': str(obligation.paid_amount)}
                    )
                if not self._store.delete(EntityKind.FEE_OBLIGATION, obligation_id, obligation.version):
                    raise NotFoundError("Fee obligation", obligation_id)

        self._concurrency_manager.execute_with_retry(attempt)

    def _lock(self, obligation_id: str):
        return self._concurrency_manager.lock(
            fee_resource(obligation_id), f"fee_ledger_{threading.get_ident()}"
        )

    def get_obligation(self, obligation_id: str) -> FeeObligation:
        return self._obligations.require(obligation_id)

    def status_of(self, obligation: FeeObligation) -> FeeStatus:
        """Settlement status as of now."""
        return obligation.status_at(self._clock.now())

    def student_summary(self, student_id: str) -> Dict[str, Any]:
        """All obligations of a student with total, paid and due sums."""
        self._students.require(student_id)
        obligations = sorted(self._obligations.find_by_student(student_id),
                             key=lambda f: (f.term, f.fee_type.value), reverse=True)
        return {
            'student_id': student_id,
            'obligations': obligations,
            'total_amount': sum((f.total_amount for f in obligations), ZERO),
            'paid_amount': sum((f.paid_amount for f in obligations), ZERO),
            'due_amount': sum((f.due_amount for f in obligations), ZERO),
        }

    def statistics(self) -> Dict[str, Any]:
        """Counts and sums grouped by status, with status derived as of now."""
        now = self._clock.now()
        by_status: Dict[str, Dict[str, Any]] = {}
        overall = {'count': 0, 'total_amount': ZERO, 'paid_amount': ZERO, 'due_amount': ZERO}
        for obligation in self._obligations.find_all():
            bucket = by_status.setdefault(obligation.status_at(now).value, {
                'count': 0, 'total_amount': ZERO, 'paid_amount': ZERO, 'due_amount': ZERO
            })
            for group in (bucket, overall):
                group['count'] += 1
                group['total_amount'] += obligation.total_amount
                group['paid_amount'] += obligation.paid_amount
                group['due_amount'] += obligation.due_amount
        return {'by_status': by_status, 'overall': overall}
