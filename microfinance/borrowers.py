"""
Borrower Directory Module

Contact lookup for borrowers. Registration and KYC live outside the engine;
the engine only needs a name and a phone number to address messages.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from .storage import StorageInterface


@dataclass(frozen=True)
class BorrowerContact:
    user_id: str
    name: str
    phone: Optional[str] = None


class BorrowerDirectory(ABC):
    """Resolves borrower contact details"""

    @abstractmethod
    def get_contact(self, user_id: str) -> Optional[BorrowerContact]:
        pass


class InMemoryBorrowerDirectory(BorrowerDirectory):
    """Dictionary-backed directory for tests and local runs"""

    def __init__(self):
        self._contacts: Dict[str, BorrowerContact] = {}

    def add(self, user_id: str, name: str, phone: Optional[str] = None) -> BorrowerContact:
        contact = BorrowerContact(user_id=user_id, name=name, phone=phone)
        self._contacts[user_id] = contact
        return contact

    def get_contact(self, user_id: str) -> Optional[BorrowerContact]:
        return self._contacts.get(user_id)


class StorageBorrowerDirectory(BorrowerDirectory):
    """Directory kept in the engine's own store, filled by the registration service"""

    def __init__(self, storage: StorageInterface, table_name: str = "borrowers"):
        self.storage = storage
        self.table_name = table_name

    def add(self, user_id: str, name: str, phone: Optional[str] = None) -> BorrowerContact:
        if not name or not name.strip():
            raise ValueError("Borrower name is required")
        contact = BorrowerContact(user_id=user_id, name=name.strip(), phone=phone or None)
        self.storage.save(self.table_name, user_id, asdict(contact))
        return contact

    def get_contact(self, user_id: str) -> Optional[BorrowerContact]:
        data = self.storage.load(self.table_name, user_id)
        return BorrowerContact(**data) if data else None
