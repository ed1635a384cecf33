"""
Credit package and payment request/response schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditPackageInfo(BaseModel):
    id: int
    name: str
    price: str = Field(..., description="Price in USD, two decimals")
    credits: int


class CreditPackagesResponse(BaseModel):
    currency: str
    packages: list[CreditPackageInfo]


class PayPalCaptureRequest(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=100)
    package_id: int


class PayPalVerifyRequest(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=100)


class PaymentResultResponse(BaseModel):
    success: bool
    message: str
    new_balance: Optional[int] = None
    error: Optional[str] = None
    can_retry: Optional[bool] = None
    transaction_id: Optional[str] = None


class PayPalVerifyResponse(BaseModel):
    success: bool
    message: str
    order_id: Optional[str] = None


class PaymentTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    amount: str
    currency: str
    status: str
    raw_payload: dict[str, Any]
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PaymentHistoryResponse(BaseModel):
    success: bool
    message: str
    transactions: list[PaymentTransactionResponse] = Field(default_factory=list)
