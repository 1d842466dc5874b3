from __future__ import annotations

from sqlalchemy import Column, Integer, String, UniqueConstraint

from models import Base


class Company(Base):
    """A company identified by its VAT registration.

    Uniqueness:
    - `(country_code, vat_number)` is the natural key and is unique.
      The constraint closes the race between the service's existence check
      and the insert under concurrent requests.
    """

    __tablename__ = "companies"
    __table_args__ = (
        UniqueConstraint(
            "country_code", "vat_number", name="uq_companies_country_code_vat_number"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String(255), nullable=False)

    # ISO 3166 alpha-2 as used by VIES (note: Greece is "EL").
    country_code = Column(String(8), nullable=False)

    vat_number = Column(String(32), nullable=False)

    def __repr__(self) -> str:
        return (
            f"Company(id={self.id!r}, name={self.name!r}, "
            f"country_code={self.country_code!r}, vat_number={self.vat_number!r})"
        )
