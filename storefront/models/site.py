from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


class SiteStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"
    archived = "archived"


class Site(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    status: SiteStatus = SiteStatus.active
    currency: str = Field(default="EUR")
    locale: str = Field(default="fr")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_open(self) -> bool:
        return self.status == SiteStatus.active
