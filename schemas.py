from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import json
from models import TransactionStatus, CallbackOutcome, RedirectMethod

# Payer schemas
class UserInfo(BaseModel):
    id: Union[int, str]
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    email: Optional[str] = None

class Patron(BaseModel):
    cat_username: str  # Patron's catalog username (barcode)
    id: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator('cat_username')
    @classmethod
    def validate_cat_username(cls, v):
        if not v.strip():
            raise ValueError('Patron catalog username is required')
        return v

class FineData(BaseModel):
    """One fine as reported by the library system"""
    fine: str = ""          # fee type code, e.g. "overdue"
    organization: str = ""
    title: str = ""
    balance: int = 0        # smallest currency unit
    fine_id: Optional[str] = None

    @field_validator('balance', mode='before')
    @classmethod
    def round_balance(cls, v):
        if isinstance(v, float):
            return int(round(v))
        return v

    @field_validator('fine', 'title', mode='before')
    @classmethod
    def sanitize_utf8(cls, v):
        if v is None:
            return ""
        if isinstance(v, bytes):
            return v.decode('utf-8', 'ignore')
        return v

# Transaction schemas
class Transaction(BaseModel):
    id: Optional[int] = None
    transaction_id: str
    source_id: str
    user_id: Union[int, str]
    cat_username: str
    amount: int             # excluding transaction fee
    transaction_fee: int = 0
    currency: str
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def total(self) -> int:
        return self.amount + self.transaction_fee

class FeeLine(BaseModel):
    transaction_id: str
    type: str = ""
    title: str = ""
    description: str = ""
    amount: int
    currency: str
    organization: str = ""
    fine_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

# Gateway interaction
class CallbackRequest(BaseModel):
    """Transport-neutral view of an inbound gateway callback"""
    method: str = "GET"
    query: Dict[str, str] = {}
    post: Dict[str, str] = {}
    headers: Dict[str, str] = {}
    body: str = ""

    def params(self) -> Dict[str, str]:
        """Query and POST parameters merged, POST taking precedence"""
        return {**self.query, **self.post}

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None

    def json_body(self) -> Optional[Dict[str, Any]]:
        if not self.body:
            return None
        try:
            payload = json.loads(self.body)
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

class GatewayResponse(BaseModel):
    """Validated callback parameters, discarded after processing"""
    transaction_id: str
    status: str
    outcome: CallbackOutcome
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    params: Dict[str, Any] = {}

class RedirectInstruction(BaseModel):
    url: str
    method: RedirectMethod = RedirectMethod.GET
    form_fields: Dict[str, str] = {}
    html: Optional[str] = None  # rendered auto-submit page for POST redirects

# API schemas
class StartPaymentRequest(BaseModel):
    user: UserInfo
    patron: Patron
    amount: int
    transaction_fee: int = 0
    fines: List[FineData] = []
    currency: str = "EUR"
    return_url: str
    notify_url: str
    locale: Optional[str] = None

    @field_validator('amount', 'transaction_fee')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError('Amounts must be non-negative')
        return v

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError('Currency must be an ISO 4217 code')
        return v

class PaymentResponseResult(BaseModel):
    transaction_id: str
    result: str
    marked: bool
    status: TransactionStatus
