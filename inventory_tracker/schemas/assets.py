from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class AssetUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    clientId: Optional[int] = None
    assetNumber: Optional[str] = None
    serialNumber: Optional[str] = None
    barcode: Optional[str] = None
    status: Optional[str] = None
    condition: Optional[str] = None
    locationId: Optional[int] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    purchaseDate: Optional[date] = None
    purchasePrice: Optional[float] = None
    currentValue: Optional[float] = None
    notes: Optional[str] = None
    imageUrl: Optional[str] = None


class AssetImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    clientId: Optional[int] = None
    rows: Optional[List[Dict[str, Any]]] = None
    csv: Optional[str] = None


class AssetBulkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: Literal["changeStatus", "delete"]
    assetIds: List[int] = []
    status: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
