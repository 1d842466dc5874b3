from __future__ import annotations

import abc
import threading
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from api.schemas.companies import CompanyData
from logging_utils import get_logger
from models.companies import Company

logger = get_logger(__name__)


class CompanyStoreError(RuntimeError):
    pass


class DuplicateCompanyError(CompanyStoreError):
    """Raised by `save` when another company already has the natural key."""

    def __init__(self, country_code: Optional[str], vat_number: Optional[str]):
        super().__init__(
            f"Company with countryCode={country_code!r} vatNumber={vat_number!r} already exists"
        )
        self.country_code = country_code
        self.vat_number = vat_number


class CompanyNotFoundError(CompanyStoreError):
    """Raised by `save` when replacing a company id that does not exist."""


class CompanyStore(abc.ABC):
    """Persistence for companies.

    Implementations must enforce natural-key uniqueness when writing, not only
    when asked via `find_by_natural_key`.
    """

    @abc.abstractmethod
    def find_all(self, offset: int = 0, limit: Optional[int] = None) -> List[CompanyData]:
        """Return companies ordered by id; `limit=None` returns everything from `offset`."""

    @abc.abstractmethod
    def find_by_id(self, company_id: int) -> Optional[CompanyData]:
        ...

    @abc.abstractmethod
    def find_by_natural_key(self, country_code: str, vat_number: str) -> Optional[CompanyData]:
        ...

    @abc.abstractmethod
    def exists_by_id(self, company_id: int) -> bool:
        ...

    @abc.abstractmethod
    def save(self, company: CompanyData) -> CompanyData:
        """Insert when `company.id` is None, otherwise replace the stored row.

        Returns the stored company (with its id).

        Raises:
            DuplicateCompanyError: the natural key belongs to another company.
            CompanyNotFoundError: replacing an id that does not exist.
        """

    @abc.abstractmethod
    def delete_by_id(self, company_id: int) -> None:
        ...


def _to_data(row: Company) -> CompanyData:
    return CompanyData(
        id=row.id,
        name=row.name,
        country_code=row.country_code,
        vat_number=row.vat_number,
    )


class SqlAlchemyCompanyStore(CompanyStore):
    """`CompanyStore` over the `companies` table.

    Each call opens its own short-lived session; returned objects are detached
    `CompanyData` snapshots and safe to cache.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def find_all(self, offset: int = 0, limit: Optional[int] = None) -> List[CompanyData]:
        session = self._session_factory()
        try:
            qry = session.query(Company).order_by(Company.id)
            if offset:
                qry = qry.offset(offset)
            if limit is not None:
                qry = qry.limit(limit)
            return [_to_data(r) for r in qry.all()]
        finally:
            session.close()

    def find_by_id(self, company_id: int) -> Optional[CompanyData]:
        session = self._session_factory()
        try:
            row = session.get(Company, company_id)
            return _to_data(row) if row is not None else None
        finally:
            session.close()

    def find_by_natural_key(self, country_code: str, vat_number: str) -> Optional[CompanyData]:
        session = self._session_factory()
        try:
            row = (
                session.query(Company)
                .filter(Company.country_code == country_code)
                .filter(Company.vat_number == vat_number)
                .first()
            )
            return _to_data(row) if row is not None else None
        finally:
            session.close()

    def exists_by_id(self, company_id: int) -> bool:
        session = self._session_factory()
        try:
            return (
                session.query(Company.id).filter(Company.id == company_id).first()
                is not None
            )
        finally:
            session.close()

    def save(self, company: CompanyData) -> CompanyData:
        session = self._session_factory()
        try:
            if company.id is None:
                row = Company(
                    name=company.name,
                    country_code=company.country_code,
                    vat_number=company.vat_number,
                )
                session.add(row)
            else:
                row = session.get(Company, company.id)
                if row is None:
                    raise CompanyNotFoundError(f"Company {company.id} does not exist")
                row.name = company.name
                row.country_code = company.country_code
                row.vat_number = company.vat_number
            session.commit()
            return _to_data(row)
        except IntegrityError as e:
            session.rollback()
            logger.info(
                "Unique constraint rejected company write | id=%s cc=%s vat=%s err=%s",
                company.id,
                company.country_code,
                company.vat_number,
                e.orig,
            )
            raise DuplicateCompanyError(company.country_code, company.vat_number) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_by_id(self, company_id: int) -> None:
        session = self._session_factory()
        try:
            session.query(Company).filter(Company.id == company_id).delete(
                synchronize_session=False
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class InMemoryCompanyStore(CompanyStore):
    """Dict-backed store with sequential ids starting at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[int, CompanyData] = {}
        self._next_id = 1

    def _key_owner(self, key: Tuple[Optional[str], Optional[str]]) -> Optional[int]:
        for row in self._rows.values():
            if row.natural_key() == key:
                return row.id
        return None

    def find_all(self, offset: int = 0, limit: Optional[int] = None) -> List[CompanyData]:
        with self._lock:
            rows = [self._rows[k] for k in sorted(self._rows)]
        end = None if limit is None else offset + limit
        return rows[offset:end]

    def find_by_id(self, company_id: int) -> Optional[CompanyData]:
        with self._lock:
            return self._rows.get(company_id)

    def find_by_natural_key(self, country_code: str, vat_number: str) -> Optional[CompanyData]:
        with self._lock:
            owner = self._key_owner((country_code, vat_number))
            return self._rows[owner] if owner is not None else None

    def exists_by_id(self, company_id: int) -> bool:
        with self._lock:
            return company_id in self._rows

    def save(self, company: CompanyData) -> CompanyData:
        with self._lock:
            owner = self._key_owner(company.natural_key())
            if owner is not None and owner != company.id:
                raise DuplicateCompanyError(company.country_code, company.vat_number)
            if company.id is None:
                stored = company.model_copy(update={"id": self._next_id})
                self._next_id += 1
            elif company.id in self._rows:
                stored = company
            else:
                raise CompanyNotFoundError(f"Company {company.id} does not exist")
            self._rows[stored.id] = stored
            return stored

    def delete_by_id(self, company_id: int) -> None:
        with self._lock:
            self._rows.pop(company_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
