from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, field_validator


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def coerce_numeric_phone(cls, value):
        # clients often send the phone number as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class Contact(BaseModel):
    """A stored row of the Contact table."""

    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def cluster_id(self) -> Optional[int]:
        """Id of the primary this row belongs to, one hop at most."""
        return self.id if self.is_primary else self.linkedId

    @property
    def sort_key(self):
        return (self.createdAt, self.id)


def _distinct(values: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for value in values:
        if value is not None and value not in seen:
            seen.append(value)
    return seen


class Cluster(BaseModel):
    """A primary contact and every secondary linked to it."""

    primary: Contact
    secondaries: List[Contact]

    @property
    def members(self) -> List[Contact]:
        return [self.primary] + sorted(self.secondaries, key=lambda c: c.sort_key)

    @property
    def emails(self) -> List[str]:
        return _distinct(c.email for c in self.members)

    @property
    def phone_numbers(self) -> List[str]:
        return _distinct(c.phoneNumber for c in self.members)

    @property
    def secondary_ids(self) -> List[int]:
        return sorted(c.id for c in self.secondaries)
