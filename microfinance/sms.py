"""
SMS Gateway Module

HTTP client for an Android SMS gateway, its administrator-edited settings
record and the message templates the engine sends. Every attempt is written
to the SMS log as sent, failed or skipped. A missing or disabled gateway is
not an error: the send reports False and is logged as skipped.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Any, List, Optional

import httpx

from .currency import Money
from .storage import StorageInterface, StorageRecord
from .exceptions import GatewayUnavailable

logger = logging.getLogger("microfinance.sms")


@dataclass
class SMSLog(StorageRecord):
    """One outbound SMS attempt"""
    user_id: str
    phone: str
    message: str
    status: str  # sent, failed, skipped
    error: Optional[str] = None


@dataclass
class SMSSettings(StorageRecord):
    """Gateway settings administrators edit at runtime; one record per store"""
    mode: str = "cloud"  # local or cloud
    local_server_url: str = ""
    cloud_server_url: str = ""
    username: str = ""
    password: str = ""
    is_active: bool = False

    @classmethod
    def from_config(cls, config) -> 'SMSSettings':
        now = datetime.now(timezone.utc)
        return cls(
            id=SMSSettingsStore.RECORD_ID,
            created_at=now,
            updated_at=now,
            mode=config.sms_mode,
            local_server_url=config.sms_local_server_url,
            cloud_server_url=config.sms_cloud_server_url,
            username=config.sms_username,
            password=config.sms_password,
            is_active=config.sms_enabled
        )

    @property
    def server_url(self) -> str:
        url = self.local_server_url if self.mode == "local" else self.cloud_server_url
        return (url or "").rstrip("/")


class SMSSettingsStore:
    """
    The stored gateway settings record

    Until an administrator saves settings, ``get`` returns the configured
    defaults.
    """

    RECORD_ID = "default"
    MODES = ("local", "cloud")

    def __init__(self, storage: StorageInterface, defaults: Optional[SMSSettings] = None,
                 table_name: str = "sms_settings"):
        if defaults is None:
            from .config import get_config
            defaults = SMSSettings.from_config(get_config())
        self.storage = storage
        self.defaults = defaults
        self.table_name = table_name

    def load(self) -> Optional[SMSSettings]:
        data = self.storage.load(self.table_name, self.RECORD_ID)
        return SMSSettings.from_dict(data) if data else None

    def get(self) -> SMSSettings:
        return self.load() or self.defaults

    def update(self, mode: str, username: str, local_server_url: Optional[str] = None,
               password: Optional[str] = None, is_active: Optional[bool] = None) -> SMSSettings:
        """
        Create or update the settings record

        The cloud server URL is not editable. A blank password keeps the stored
        one; creating the record requires a password.

        Raises:
            ValueError: missing mode or username, unknown mode, local mode
                without a server URL, or a new record without a password
        """
        if not mode or not username or not username.strip():
            raise ValueError("Mode and username are required")
        if mode not in self.MODES:
            raise ValueError(f"Unknown SMS mode: {mode}")
        if mode == "local" and not (local_server_url or "").strip():
            raise ValueError("Local server URL is required for local mode")

        now = datetime.now(timezone.utc)
        settings = self.load()
        if settings is None:
            if not password or not password.strip():
                raise ValueError("Password is required when creating new settings")
            settings = SMSSettings(
                id=self.RECORD_ID,
                created_at=now,
                updated_at=now,
                cloud_server_url=self.defaults.cloud_server_url,
                is_active=True
            )

        settings.mode = mode
        settings.local_server_url = local_server_url.strip() if mode == "local" else ""
        settings.username = username.strip()
        if password and password.strip():
            settings.password = password
        if is_active is not None:
            settings.is_active = is_active
        settings.updated_at = now

        self.storage.save(self.table_name, self.RECORD_ID, settings.to_dict())
        logger.info(f"SMS settings saved: mode={settings.mode}, active={settings.is_active}")
        return settings


class SMSGateway(ABC):
    """
    Sends SMS and records each attempt

    Subclasses implement ``_deliver``; ``send_sms`` turns its outcome into the
    boolean the engine consumes.
    """

    def __init__(self, storage: Optional[StorageInterface] = None, table_name: str = "sms_logs"):
        self.storage = storage
        self.table_name = table_name

    @abstractmethod
    def _deliver(self, phone: str, message: str) -> None:
        """
        Hand the message to the transport

        Raises:
            GatewayUnavailable: transport not configured or inactive
            Exception: any delivery failure
        """
        pass

    def send_sms(self, phone: str, message: str, user_id: Optional[str] = None) -> bool:
        """
        Send one message

        Returns:
            True only if the gateway accepted the message
        """
        try:
            self._deliver(phone, message)
        except GatewayUnavailable as e:
            logger.info(f"SMS skipped for {phone}: {e}")
            self._record(user_id, phone, message, "skipped", str(e))
            return False
        except Exception as e:
            logger.error(f"SMS sending failed for {phone}: {e}")
            self._record(user_id, phone, message, "failed", str(e))
            return False

        logger.info(f"SMS sent to {phone}")
        self._record(user_id, phone, message, "sent")
        return True

    def _record(self, user_id: Optional[str], phone: str, message: str,
                status: str, error: Optional[str] = None) -> None:
        if self.storage is None:
            return
        now = datetime.now(timezone.utc)
        entry = SMSLog(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id or "",
            phone=phone,
            message=message,
            status=status,
            error=error
        )
        try:
            self.storage.save(self.table_name, entry.id, entry.to_dict())
        except Exception as e:
            logger.error(f"Error logging SMS: {e}")

    def get_logs(self, user_id: Optional[str] = None, status: Optional[str] = None) -> List[SMSLog]:
        if self.storage is None:
            return []
        filters: Dict[str, Any] = {}
        if user_id is not None:
            filters['user_id'] = user_id
        if status is not None:
            filters['status'] = status
        logs = [SMSLog.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        return sorted(logs, key=lambda l: l.created_at)

    def close(self) -> None:
        pass


class HttpSMSGateway(SMSGateway):
    """
    Android SMS gateway reached over HTTP with basic auth

    Settings are read on every send: the stored record when an administrator
    has saved one, otherwise the values this gateway was built with.
    """

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        enabled: bool = True,
        mode: str = "cloud",
        local_server_url: str = "",
        cloud_server_url: str = "",
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
        settings_store: Optional[SMSSettingsStore] = None
    ):
        super().__init__(storage)
        self.enabled = enabled
        self.mode = mode
        self.local_server_url = local_server_url.rstrip("/")
        self.cloud_server_url = cloud_server_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.settings_store = settings_store
        self._client = httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config, storage: Optional[StorageInterface] = None,
                    settings_store: Optional[SMSSettingsStore] = None) -> 'HttpSMSGateway':
        return cls(
            storage=storage,
            enabled=config.sms_enabled,
            mode=config.sms_mode,
            local_server_url=config.sms_local_server_url,
            cloud_server_url=config.sms_cloud_server_url,
            username=config.sms_username,
            password=config.sms_password,
            timeout=config.sms_timeout,
            settings_store=settings_store
        )

    @property
    def server_url(self) -> str:
        return self.current_settings().server_url

    def current_settings(self) -> SMSSettings:
        stored = self.settings_store.load() if self.settings_store is not None else None
        if stored is not None:
            return stored
        now = datetime.now(timezone.utc)
        return SMSSettings(
            id=SMSSettingsStore.RECORD_ID,
            created_at=now,
            updated_at=now,
            mode=self.mode,
            local_server_url=self.local_server_url,
            cloud_server_url=self.cloud_server_url,
            username=self.username,
            password=self.password,
            is_active=self.enabled
        )

    def _deliver(self, phone: str, message: str) -> None:
        settings = self.current_settings()
        if not settings.is_active or not settings.server_url:
            raise GatewayUnavailable("SMS settings not configured or inactive")

        response = self._client.post(
            f"{settings.server_url}/message",
            json={
                "textMessage": {"text": message},
                "phoneNumbers": [phone]
            },
            auth=(settings.username, settings.password)
        )
        if response.status_code >= 400:
            raise RuntimeError(f"HTTP {response.status_code}: {response.text}")

    def close(self) -> None:
        self._client.close()


class LogSMSGateway(SMSGateway):
    """Writes messages to the log instead of sending them; keeps an outbox for inspection"""

    def __init__(self, storage: Optional[StorageInterface] = None, succeed: bool = True):
        super().__init__(storage)
        self.succeed = succeed
        self.outbox: List[Dict[str, str]] = []

    def _deliver(self, phone: str, message: str) -> None:
        if not self.succeed:
            raise GatewayUnavailable("SMS delivery disabled")
        self.outbox.append({"phone": phone, "message": message})
        logger.debug(f"SMS to {phone}: {message}")


def _period(due_date: date) -> str:
    return due_date.strftime("%B %Y")


def _signature(company_name: str) -> str:
    return f"\n\nBest regards,\n{company_name}"


def due_soon_message(name: str, term_number: int, loan_id: str, due_date: date,
                     days_until_due: int, amount_due: Money, company_name: str) -> str:
    plural = "" if days_until_due == 1 else "s"
    return (
        f"Dear {name},\n\n"
        f"REMINDER: Your payment for Term {term_number} ({_period(due_date)}) "
        f"is due in {days_until_due} day{plural}.\n\n"
        f"Payment Details:\n"
        f"- Loan ID: {loan_id}\n"
        f"- Term Number: {term_number}\n"
        f"- Amount Due: {amount_due.to_string()}\n"
        f"- Due Date: {due_date.isoformat()}\n\n"
        f"Please make your payment before the due date to avoid late fees."
        f"{_signature(company_name)}"
    )


def overdue_message(name: str, term_number: int, loan_id: str, due_date: date,
                    days_overdue: int, amount_due: Money, penalty: Money,
                    company_name: str) -> str:
    penalty_lines = ""
    if penalty.is_positive():
        penalty_lines = (
            f"- Late Fee: {penalty.to_string()}\n"
            f"- Total Amount Due: {(amount_due + penalty).to_string()}\n"
        )
    return (
        f"Dear {name},\n\n"
        f"URGENT: Your payment for Term {term_number} ({_period(due_date)}) is OVERDUE!\n\n"
        f"Payment Details:\n"
        f"- Loan ID: {loan_id}\n"
        f"- Term Number: {term_number}\n"
        f"- Amount Due: {amount_due.to_string()}\n"
        f"- Days Overdue: {days_overdue}\n"
        f"{penalty_lines}"
        f"- Due Date: {due_date.isoformat()}\n\n"
        f"Please make your payment immediately to avoid additional penalties."
        f"{_signature(company_name)}"
    )


def payment_approved_message(name: str, payment_type: str, amount: Money, due_date: date,
                             remaining: Money, company_name: str) -> str:
    return (
        f"Dear {name},\n\n"
        f"Your {payment_type.lower()} payment of {amount.to_string()} for the month of "
        f"{_period(due_date)} has been APPROVED.\n\n"
        f"Remaining Balance: {remaining.to_string()}\n\n"
        f"Thank you for your payment."
        f"{_signature(company_name)}"
    )


def payment_rejected_message(name: str, payment_type: str, amount: Money, due_date: date,
                             reason: str, company_name: str) -> str:
    return (
        f"Dear {name},\n\n"
        f"Your {payment_type.lower()} payment of {amount.to_string()} for the month of "
        f"{_period(due_date)} has been REJECTED.\n\n"
        f"Reason: {reason}\n\n"
        f"Please contact us or submit a new payment."
        f"{_signature(company_name)}"
    )
