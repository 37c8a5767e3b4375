from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MaintenanceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetId: int
    type: str
    description: str
    scheduledDate: Optional[date] = None
    estimatedCost: Optional[float] = None
    priority: Optional[str] = None
    notes: Optional[str] = None


class MaintenanceUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[str] = None
    priority: Optional[str] = None
    performedDate: Optional[date] = None
    actualCost: Optional[float] = None
    performedById: Optional[int] = None
    notes: Optional[str] = None
    completionNotes: Optional[str] = None
