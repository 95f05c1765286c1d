"""
HimKosh Field-String Codec: pipe-delimited ``Key=Value`` wire strings.

The treasury recomputes the checksum over the *core* part of the request
(everything up to the last head/period field) and ignores ``Service_code``
and ``return_url``, which are appended after that boundary. Field order is
part of the contract, so it lives in one table (``REQUEST_FIELDS``) rather
than in scattered conditionals.
"""
from dataclasses import dataclass, fields
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from hptourism.himkosh.exceptions import InvalidFieldValueError

Amount = Union[int, float, Decimal, str]

SEPARATOR = "|"
REQUEST_CHECKSUM_KEY = "checkSum"
RESPONSE_CHECKSUM_KEY = "checksum"


def to_whole_rupees(amount: Optional[Amount]) -> int:
    """Round an amount half-up to whole rupees. The gateway rejects decimals."""
    if amount is None or amount == "":
        return 0
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class PaymentRequest:
    """Inputs for one outbound HimKosh challan request."""

    dept_id: str
    dept_ref_no: str
    total_amount: Amount
    tender_by: str
    app_ref_no: str
    head1: str
    amount1: Amount
    ddo: str
    period_from: str
    period_to: str
    head2: Optional[str] = None
    amount2: Amount = 0
    head3: Optional[str] = None
    amount3: Amount = 0
    head4: Optional[str] = None
    amount4: Amount = 0
    head10: Optional[str] = None
    amount10: Amount = 0
    service_code: Optional[str] = None
    return_url: Optional[str] = None

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, str) and SEPARATOR in value:
                raise InvalidFieldValueError(f"{f.name} must not contain '{SEPARATOR}'")


class FieldSpec(NamedTuple):
    name: str
    render: Callable[[PaymentRequest], str]
    include: Callable[[PaymentRequest], bool]
    core: bool  # False: appended after the checksum boundary


def _text(attr: str) -> Callable[[PaymentRequest], str]:
    return lambda req: getattr(req, attr) or ""


def _amount(attr: str) -> Callable[[PaymentRequest], str]:
    return lambda req: str(to_whole_rupees(getattr(req, attr)))


def _always(req: PaymentRequest) -> bool:
    return True


def _has(attr: str) -> Callable[[PaymentRequest], bool]:
    return lambda req: bool(getattr(req, attr))


def _head2(req: PaymentRequest) -> str:
    return req.head2 or req.head1 or ""


def _paid(head: str, amount: str) -> Callable[[PaymentRequest], bool]:
    return lambda req: bool(getattr(req, head)) and to_whole_rupees(getattr(req, amount)) > 0


# Order matters. Head2/Amount2 are always sent, falling back to Head1 with a
# zero amount when no secondary head is configured. Head3/4/10 only when
# they carry money.
REQUEST_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("DeptID", _text("dept_id"), _always, True),
    FieldSpec("DeptRefNo", _text("dept_ref_no"), _always, True),
    FieldSpec("TotalAmount", _amount("total_amount"), _always, True),
    FieldSpec("TenderBy", _text("tender_by"), _always, True),
    FieldSpec("AppRefNo", _text("app_ref_no"), _always, True),
    FieldSpec("Head1", _text("head1"), _always, True),
    FieldSpec("Amount1", _amount("amount1"), _always, True),
    FieldSpec("Head2", _head2, _always, True),
    FieldSpec("Amount2", _amount("amount2"), _always, True),
    FieldSpec("Ddo", _text("ddo"), _always, True),
    FieldSpec("PeriodFrom", _text("period_from"), _always, True),
    FieldSpec("PeriodTo", _text("period_to"), _always, True),
    FieldSpec("Head3", _text("head3"), _paid("head3", "amount3"), True),
    FieldSpec("Amount3", _amount("amount3"), _paid("head3", "amount3"), True),
    FieldSpec("Head4", _text("head4"), _paid("head4", "amount4"), True),
    FieldSpec("Amount4", _amount("amount4"), _paid("head4", "amount4"), True),
    FieldSpec("Head10", _text("head10"), _paid("head10", "amount10"), True),
    FieldSpec("Amount10", _amount("amount10"), _paid("head10", "amount10"), True),
    FieldSpec("Service_code", _text("service_code"), _has("service_code"), False),
    FieldSpec("return_url", _text("return_url"), _has("return_url"), False),
)


class RequestStrings(NamedTuple):
    core: str  # checksum input
    full: str  # core plus trailing routing fields; what gets encrypted


def _join(pairs: List[Tuple[str, str]]) -> str:
    return SEPARATOR.join(f"{key}={value}" for key, value in pairs)


def build_request_string(request: PaymentRequest) -> RequestStrings:
    """Render a request into its core (checksummed) and full wire strings."""
    core: List[Tuple[str, str]] = []
    trailer: List[Tuple[str, str]] = []
    for spec in REQUEST_FIELDS:
        if not spec.include(request):
            continue
        (core if spec.core else trailer).append((spec.name, spec.render(request)))
    return RequestStrings(core=_join(core), full=_join(core + trailer))


def with_checksum(text: str, checksum: str, key: str = REQUEST_CHECKSUM_KEY) -> str:
    return f"{text}{SEPARATOR}{key}={checksum}"


def build_verification_string(app_ref_no: str, service_code: str, merchant_code: str) -> str:
    """Field string for the server-to-server double verification call."""
    return _join([
        ("AppRefNo", app_ref_no),
        ("Service_code", service_code),
        ("merchant_code", merchant_code),
    ])


def parse_pipe_string(text: str) -> Dict[str, str]:
    """Split ``K=V|K=V`` into a dict.

    Only the first ``=`` of a segment separates key from value. Segments
    without ``=`` or with an empty key are skipped.
    """
    data: Dict[str, str] = {}
    for segment in (text or "").split(SEPARATOR):
        key, sep, value = segment.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        data[key] = value.strip()
    return data


def split_checksum(text: str) -> Tuple[str, str]:
    """Separate a decrypted message into (body, presented checksum).

    The checksum is the last ``|checksum=`` segment, key matched without
    regard to case. A message without one yields an empty checksum.
    """
    marker = f"{SEPARATOR}{RESPONSE_CHECKSUM_KEY}=".lower()
    idx = text.lower().rfind(marker)
    if idx < 0:
        return text, ""
    return text[:idx], text[idx + len(marker):].strip()


@dataclass(frozen=True)
class CallbackResponse:
    """Decrypted treasury callback, tolerant of missing fields."""

    ech_txn_id: str = ""
    bank_cin: str = ""
    bank: str = ""
    status: str = ""
    status_cd: str = ""
    app_ref_no: str = ""
    amount: str = ""
    payment_date: str = ""
    dept_ref_no: str = ""
    bank_name: str = ""
    checksum: str = ""

    @property
    def is_success(self) -> bool:
        return self.status_cd == "1"


RESPONSE_FIELDS = {
    "EchTxnId": "ech_txn_id",
    "BankCIN": "bank_cin",
    "Bank": "bank",
    "Status": "status",
    "StatusCd": "status_cd",
    "AppRefNo": "app_ref_no",
    "Amount": "amount",
    "Payment_date": "payment_date",
    "DeptRefNo": "dept_ref_no",
    "BankName": "bank_name",
    "checksum": "checksum",
}


def parse_response_string(text: str) -> CallbackResponse:
    data = parse_pipe_string(text)
    return CallbackResponse(**{
        attr: data.get(wire_name, "") for wire_name, attr in RESPONSE_FIELDS.items()
    })
