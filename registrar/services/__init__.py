"""
Services module containing the ledger services and concurrency control.
"""

from .concurrency_manager import ConcurrencyManager
from .enrollment_service import EnrollmentService
from .fee_ledger import FeeLedgerService
from .gradebook import GradebookService, MarkEntryResult
from .registry_service import RegistryService

__all__ = [
    "ConcurrencyManager",
    "EnrollmentService",
    "FeeLedgerService",
    "GradebookService",
    "MarkEntryResult",
    "RegistryService",
]
