"""
Declarative fan-out policy.

Decides, once per ingest request, which stores a document is written into.
"""

from dataclasses import dataclass
from typing import List, Optional

from docchat.config.settings import settings
from docchat.utils.text_utils import document_stem
from docchat.vector.registry import StoreKey


@dataclass(frozen=True)
class FanOutPolicy:
    """
    Which stores receive an ingested document.

    For a user document ``policy.txt`` of ``alice`` with the defaults the
    targets are ``alice_policy`` and ``alice_combined`` (user scope); with
    ``system_combined`` the system ``combined`` store is added. A document
    without an owner goes to the system store ``policy`` and the system
    combined store.
    """
    individual: bool = True
    owner_combined: bool = True
    system_combined: bool = False
    combined_name: str = "combined"

    @classmethod
    def from_settings(cls) -> "FanOutPolicy":
        return cls(
            individual=settings.fanout_individual,
            owner_combined=settings.fanout_owner_combined,
            system_combined=settings.fanout_system_combined,
            combined_name=settings.combined_store_name,
        )

    def individual_store_name(self, owner_user_id: Optional[str], document_name: str) -> str:
        stem = document_stem(document_name) or "document"
        return f"{owner_user_id}_{stem}" if owner_user_id else stem

    def combined_store_name(self, owner_user_id: Optional[str]) -> str:
        return f"{owner_user_id}_{self.combined_name}" if owner_user_id else self.combined_name

    def targets(self, owner_user_id: Optional[str], document_name: str) -> List[StoreKey]:
        """Store keys to write, in order, without duplicates."""
        keys: List[StoreKey] = []

        def add(key: StoreKey) -> None:
            if key not in keys:
                keys.append(key)

        if owner_user_id:
            if self.individual:
                add(StoreKey.user(owner_user_id, self.individual_store_name(owner_user_id, document_name)))
            if self.owner_combined:
                add(StoreKey.user(owner_user_id, self.combined_store_name(owner_user_id)))
            if self.system_combined:
                add(StoreKey.system(self.combined_name))
        else:
            if self.individual:
                add(StoreKey.system(self.individual_store_name(None, document_name)))
            if self.owner_combined or self.system_combined:
                add(StoreKey.system(self.combined_name))

        return keys
