"""
Engine wiring and request dependencies
"""

from typing import Optional

from fastapi import HTTPException

from ..storage import InMemoryStorage, SQLiteStorage
from ..audit import ActivityLog
from ..notifications import NotificationCenter
from ..rates import LoanTypeManager, RateTable
from ..schedule import ScheduleGenerator
from ..penalties import PenaltyCalculator
from ..loans import LoanManager
from ..status import StatusPropagator
from ..payments import PaymentLedger
from ..dispatcher import NotificationDispatcher
from ..borrowers import BorrowerDirectory, StorageBorrowerDirectory
from ..sms import SMSGateway, HttpSMSGateway, SMSSettings, SMSSettingsStore
from ..exceptions import ConcurrentModification, LendingError, RecordNotFound
from ..config import get_config


class LendingSystem:
    """Loan engine with all components initialized"""

    def __init__(
        self,
        use_sqlite: Optional[bool] = None,
        database_path: Optional[str] = None,
        sms_gateway: Optional[SMSGateway] = None,
        borrower_directory: Optional[BorrowerDirectory] = None
    ):
        config = get_config()
        if use_sqlite is None:
            use_sqlite = config.use_sqlite

        # Initialize storage
        if use_sqlite:
            self.storage = SQLiteStorage(database_path or config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.activity_log = ActivityLog(self.storage)
        self.notification_center = NotificationCenter(self.storage)
        self.borrower_directory = borrower_directory or StorageBorrowerDirectory(self.storage)
        self.sms_settings = SMSSettingsStore(self.storage, SMSSettings.from_config(config))
        self.sms_gateway = sms_gateway or HttpSMSGateway.from_config(config, self.storage, self.sms_settings)

        self.loan_type_manager = LoanTypeManager(self.storage, self.activity_log)
        self.rate_table = RateTable()
        self.schedule_generator = ScheduleGenerator(config.interest_basis)
        self.penalty_calculator = PenaltyCalculator(config.business_timezone)
        self.loan_manager = LoanManager(
            self.storage, self.loan_type_manager, self.rate_table,
            self.schedule_generator, self.penalty_calculator,
            self.activity_log, self.notification_center
        )
        self.status_propagator = StatusPropagator(self.loan_manager)
        self.payment_ledger = PaymentLedger(
            self.storage, self.loan_manager, self.status_propagator,
            self.penalty_calculator, self.activity_log, self.notification_center,
            self.sms_gateway, self.borrower_directory
        )
        self.dispatcher = NotificationDispatcher(
            self.loan_manager, self.notification_center, self.sms_gateway,
            self.borrower_directory, self.status_propagator,
            self.penalty_calculator, self.activity_log
        )

    def close(self) -> None:
        self.sms_gateway.close()
        self.storage.close()


# Invalid amounts raise decimal.InvalidOperation, an ArithmeticError
CLIENT_ERRORS = (LendingError, ValueError, KeyError, ArithmeticError)

_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Dependency returning the process-wide engine, created on first use"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system


def http_error(error: Exception) -> HTTPException:
    """Map engine errors to HTTP responses"""
    if isinstance(error, RecordNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConcurrentModification):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, CLIENT_ERRORS):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=500, detail="Internal server error")
