"""Canonical data models for TaxSmart document processing."""
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Dict, List, Tuple, Type, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

# Deductor PAN value used by the tax department when the PAN is not available
PAN_NOT_AVAILABLE = "PANNOTAVBL"

DEFAULT_STANDARD_DEDUCTION = 50000

_CURRENCY_NOISE = ("₹", "rs.", "rs", "inr", ",", " ", "\u00a0")


class DocumentKind(str, Enum):
    """Supported tax documents, valued by their upload field name."""
    F16 = "f16"
    AS26 = "as26"
    AIS = "ais"

    @property
    def label(self) -> str:
        """Human readable document name used in warnings and logs."""
        return _DOCUMENT_LABELS[self]


_DOCUMENT_LABELS = {
    DocumentKind.F16: "Form 16",
    DocumentKind.AS26: "Form 26AS",
    DocumentKind.AIS: "AIS",
}


class SeverityClass(str, Enum):
    """Finding severity."""
    CRITICAL = "crit"
    WARNING = "warn"
    INFO = "info"


class SeverityColor(str, Enum):
    """Display colour paired with each severity."""
    RED = "red"
    AMBER = "amber"
    BLUE = "blue"


def coerce_amount(value: Any) -> Any:
    """Normalise a model-provided amount into an integer number of rupees.

    Accepts ints, floats (rounded half-up) and strings such as ``"₹1,23,456"``.
    Anything else is handed to pydantic unchanged so it fails validation.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number, not a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("amount must be finite")
        value = Decimal(str(value))
    if isinstance(value, str):
        cleaned = value.strip().lower()
        for token in _CURRENCY_NOISE:
            cleaned = cleaned.replace(token, "")
        if not cleaned:
            return 0
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"not a valid amount: {value!r}")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError("amount must be finite")
        return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return value


def coerce_text(value: Any) -> Any:
    """Map numbers to strings so that e.g. a numeric PAN still validates."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


Amount = Annotated[int, BeforeValidator(coerce_amount), Field(ge=0)]
Text = Annotated[str, BeforeValidator(coerce_text)]


class ExtractedRecord(BaseModel):
    """Common behaviour for records built from model output.

    Missing or null keys fall back to the field default, so a record is never
    partially absent: every rule can read every field.
    """
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_null_values(cls, data: Any) -> Any:
        """Treat ``null`` the same as a missing key."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Form16Record(ExtractedRecord):
    """Fields extracted from an employer-issued Form 16."""
    name: Text = ""
    pan: Text = ""
    employer_name: Text = ""
    gross_salary: Amount = 0
    basic_salary: Amount = 0
    hra_received: Amount = 0
    special_allowance: Amount = 0
    prof_tax: Amount = 0
    epf_employee: Amount = 0
    epf_employer: Amount = 0
    sec80c: Amount = 0
    nps: Amount = 0
    employer_nps: Amount = 0
    sec80d_self: Amount = 0
    home_loan_interest: Amount = 0
    sec80e: Amount = 0
    standard_deduction: Amount = DEFAULT_STANDARD_DEDUCTION
    tds_deducted_form16: Amount = 0
    total_income_form16: Amount = 0
    taxable_income_form16: Amount = 0


class TdsEntry(ExtractedRecord):
    """A single deductor line from Form 26AS."""
    deductor: Text = ""
    amount: Amount = 0
    tds: Amount = 0
    pan_deductor: Text = ""

    @property
    def has_missing_pan(self) -> bool:
        """True when the deductor PAN is blank or the not-available sentinel."""
        pan = self.pan_deductor.strip().upper()
        return not pan or pan == PAN_NOT_AVAILABLE


class Form26ASRecord(ExtractedRecord):
    """Fields extracted from the Form 26AS tax credit statement."""
    pan: Text = ""
    tds_entries: List[TdsEntry] = Field(default_factory=list)
    total_tds_26as: Amount = 0
    advance_tax: Amount = 0
    self_assessment_tax: Amount = 0
    salary_income_26as: Amount = 0
    interest_income_26as: Amount = 0


class AISRecord(ExtractedRecord):
    """Fields extracted from the Annual Information Statement."""
    pan: Text = ""
    salary_ais: Amount = 0
    interest_income_ais: Amount = 0
    dividend_ais: Amount = 0
    rental_income_ais: Amount = 0
    ltcg_ais: Amount = 0
    stcg_ais: Amount = 0
    mf_transactions: Amount = 0
    foreign_income: Amount = 0
    tds_total_ais: Amount = 0


Record = Union[Form16Record, Form26ASRecord, AISRecord]

RECORD_MODELS: Dict[DocumentKind, Type[ExtractedRecord]] = {
    DocumentKind.F16: Form16Record,
    DocumentKind.AS26: Form26ASRecord,
    DocumentKind.AIS: AISRecord,
}


def empty_record(kind: DocumentKind) -> Record:
    """Zero-value record for a document that was absent or failed."""
    return RECORD_MODELS[kind]()


# Marks a list item removed by _drop_location until the list is compacted
_DROPPED = object()

# Each pass removes every reported field; nested lists may need a second look
_MAX_REPAIR_PASSES = 3

Location = Tuple[Union[str, int], ...]


def _compact(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _compact(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_compact(item) for item in value if item is not _DROPPED]
    return value


def _drop_location(payload: Any, loc: Location) -> bool:
    """Remove the value at ``loc`` from ``payload``; False if it cannot be found."""
    if not loc:
        return False
    parent = payload
    for part in loc[:-1]:
        if isinstance(parent, dict) and part in parent:
            parent = parent[part]
        elif isinstance(parent, list) and isinstance(part, int) and 0 <= part < len(parent):
            parent = parent[part]
        else:
            return False

    last = loc[-1]
    if isinstance(parent, dict) and last in parent:
        del parent[last]
        return True
    if isinstance(parent, list) and isinstance(last, int) and 0 <= last < len(parent):
        parent[last] = _DROPPED
        return True
    return False


def validate_record(kind: DocumentKind, data: Dict[str, Any]) -> Tuple[Record, List[Location]]:
    """Validate model output, dropping fields that fail instead of the whole record.

    A dropped field falls back to its default exactly as if it had been absent,
    so one unreadable amount does not discard the rest of the document.

    Returns:
        The record and the locations of the dropped values

    Raises:
        ValidationError: If the payload cannot be repaired by dropping fields
    """
    model = RECORD_MODELS[kind]
    payload = _compact(data)
    dropped: List[Location] = []

    for _ in range(_MAX_REPAIR_PASSES):
        try:
            return model.model_validate(payload), dropped
        except ValidationError as e:
            locations = [tuple(error["loc"]) for error in e.errors()]
            if not all(_drop_location(payload, loc) for loc in locations):
                raise
            dropped.extend(locations)
            payload = _compact(payload)

    return model.model_validate(payload), dropped


class Finding(BaseModel):
    """A single reconciliation result shown to the filer."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    severity_class: SeverityClass = Field(..., description="crit, warn or info")
    title: str = Field(..., description="Short headline")
    description: str = Field(..., description="What was found, with amounts")
    recommended_action: str = Field(..., description="What the filer should do")
    severity_color: SeverityColor = Field(..., description="Display colour")
    icon: str = Field(default="", description="Presentation hint")


class DocumentWarning(BaseModel):
    """Explains why a document contributed no data, or only part of it."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    document_label: str = Field(..., description="Form 16, Form 26AS or AIS")
    message: str = Field(..., description="Failure reason or what was left unread")


class CombinedResult(BaseModel):
    """Everything produced for one request.

    ``findings`` goes out on the wire as ``errors``; existing clients read that
    key. The entries are advisory findings, not request failures.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    f16_data: Form16Record = Field(default_factory=Form16Record, alias="f16Data")
    as26_data: Form26ASRecord = Field(default_factory=Form26ASRecord, alias="as26Data")
    ais_data: AISRecord = Field(default_factory=AISRecord, alias="aisData")
    findings: List[Finding] = Field(default_factory=list, serialization_alias="errors")
    warnings: List[DocumentWarning] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        """Serialise to the JSON body returned by ``POST /extract``."""
        return self.model_dump(mode="json", by_alias=True)
