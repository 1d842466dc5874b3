from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator

# Largest value a 64-bit signed INTEGER column (and LIMIT/OFFSET) can hold.
MAX_DB_INT = 2**63 - 1

# JSON name -> attribute name for fields every stored company must have.
REQUIRED_COMPANY_FIELDS = {
    "name": "name",
    "countryCode": "country_code",
    "vatNumber": "vat_number",
}


class CompanyData(BaseModel):
    """Company as exchanged with clients and returned by stores.

    All fields are optional here so incomplete request bodies parse; the
    service decides what is required for each operation.
    """

    # Strict: a JSON boolean is not an id.
    id: Optional[StrictInt] = Field(default=None, le=MAX_DB_INT)
    name: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    vat_number: Optional[str] = Field(default=None, alias="vatNumber")

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def missing_fields(self) -> List[str]:
        """Return JSON names of required fields that are null or empty."""
        return [
            json_name
            for json_name, attr in REQUIRED_COMPANY_FIELDS.items()
            if not getattr(self, attr)
        ]

    def natural_key(self) -> tuple[Optional[str], Optional[str]]:
        return (self.country_code, self.vat_number)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CheckVatResult(BaseModel):
    """Outcome of a VAT registry lookup (VIES checkVatResponse)."""

    country_code: str = Field(alias="countryCode")
    vat_number: str = Field(alias="vatNumber")
    request_date: Optional[date] = Field(default=None, alias="requestDate")
    valid: bool
    name: Optional[str] = None
    address: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PageRequest(BaseModel):
    """Offset/limit paging; `size=None` means unpaged (page is ignored)."""

    page: int = Field(default=0, ge=0, le=MAX_DB_INT)
    size: Optional[int] = Field(default=None, ge=1, le=MAX_DB_INT)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _offset_fits(self) -> "PageRequest":
        if self.size is not None and self.page * self.size > MAX_DB_INT:
            raise ValueError("page * size is too large")
        return self

    @property
    def unpaged(self) -> bool:
        return self.size is None

    @property
    def offset(self) -> int:
        return 0 if self.size is None else self.page * self.size

    @property
    def limit(self) -> Optional[int]:
        return self.size

    def cache_key(self) -> tuple[int, Optional[int]]:
        # Unpaged requests share one entry whatever page was asked for.
        return (0 if self.size is None else self.page, self.size)
