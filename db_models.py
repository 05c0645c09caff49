from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def rank(self) -> int:
        """Sort key: primaries order before secondaries."""
        return 0 if self is LinkPrecedence.PRIMARY else 1


class ContactRecord(BaseModel):
    """One row of the Contact table."""

    id: int
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence is LinkPrecedence.PRIMARY

    @property
    def primary_id(self) -> int:
        """Id of the primary this record hangs off (itself if primary)."""
        return self.linkedId if self.linkedId is not None else self.id


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def coerce_phone(cls, v):
        # callers frequently send the number as a JSON number
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ContactResponse(BaseModel):
    # the misspelled key is part of the public contract
    model_config = ConfigDict(populate_by_name=True)

    primaryContactId: Optional[int] = Field(default=None, alias="primaryContatctId")
    emails: List[str] = []
    phoneNumbers: List[str] = []
    secondaryContactIds: List[int] = []


class FinalResponse(BaseModel):
    contact: ContactResponse


class AddContactRequest(BaseModel):
    id: Optional[int] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence = LinkPrecedence.PRIMARY
    createdAt: Optional[datetime] = None
