from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class TransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetId: int
    type: Literal["CHECK_OUT", "CHECK_IN"]
    notes: Optional[str] = None
    expectedReturnDate: Optional[datetime] = None
    assignedUserId: Optional[int] = None


class BulkTransactionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetId: int
    notes: Optional[str] = None
    expectedReturnDate: Optional[datetime] = None
    assignedUserId: Optional[int] = None


class BulkTransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: Literal["CHECK_OUT", "CHECK_IN"]
    items: List[BulkTransactionItem] = []


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toUserId: Optional[int] = None
