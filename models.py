"""
Model enums for type hints and validation
Note: Persistence is handled by the transaction store (Supabase tables),
these enums are shared by schemas.py, the store and the payment handlers.
"""
import enum

class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELED = "canceled"

class PaymentResult(enum.IntEnum):
    """Result codes returned by process_payment_response"""
    SUCCESS = 0  # Successful payment, mark fees paid
    CANCEL = 1   # Payment canceled
    FAILURE = 2  # Payment failed
    PENDING = 3  # Payment in progress

class CallbackOutcome(str, enum.Enum):
    """Gateway status after mapping through the gateway's own vocabulary"""
    PAID = "paid"
    CANCELED = "canceled"
    PENDING = "pending"
    UNKNOWN = "unknown"

class RedirectMethod(str, enum.Enum):
    GET = "GET"    # 302 to a gateway-hosted payment page
    POST = "POST"  # auto-submitting HTML form

# Gateway status vocabularies

class CpuStatus(enum.IntEnum):
    CANCELLED = 0
    SUCCESS = 1
    PENDING = 2
    ID_EXISTS = 97
    ERROR = 98
    INVALID_REQUEST = 99

class PaytrailE2Status(str, enum.Enum):
    PAID = "PAID"
    CANCELLED = "CANCELLED"

class CheckoutStatus(str, enum.Enum):
    OK = "ok"
    FAIL = "fail"
    NEW = "new"
    PENDING = "pending"
    DELAYED = "delayed"

class PaytrailItemType(enum.IntEnum):
    NORMAL = 1
    POSTAL = 2
    HANDLING = 3
