from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class PresetSubstitutionDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetId: int
    preference: Optional[int] = None
    notes: Optional[str] = None


class PresetItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    assetId: Optional[int] = None
    category: Optional[str] = None
    quantity: int = 1
    isRequired: bool = True
    priority: Optional[int] = None
    notes: Optional[str] = None
    substitutions: List[PresetSubstitutionDto] = []


class PresetUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    department: Optional[str] = None
    priority: Optional[int] = None
    isTemplate: Optional[bool] = None
    isActive: Optional[bool] = None
    notes: Optional[str] = None
    items: Optional[List[PresetItemDto]] = None


class PresetCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scannedAssetIds: List[int]
    expectedReturnDate: Optional[datetime] = None


class PresetDetectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetIds: List[int] = []


class SubstitutionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    substitutions: Dict[int, Optional[int]] = {}
