"""Company CRUD workflow with response caching and VAT verification.

Cache regions and their keys:
- "companies": list results, keyed by (page, size); dropped on every write
- "company":   single company, keyed by id
- "checkVat":  verification result, keyed by id; only successful calls are kept

Writes evict before returning, so the next read of an affected key reloads.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from api.schemas.companies import MAX_DB_INT, CheckVatResult, CompanyData, PageRequest
from api.services.company_store import (
    CompanyNotFoundError,
    CompanyStore,
    DuplicateCompanyError,
)
from api.services.response_cache import ResponseCache
from logging_utils import get_logger
from utils.vies_client import VatVerificationError, VatVerifier

logger = get_logger(__name__)

CACHE_ALL = "companies"
CACHE_COMPANY = "company"
CACHE_CHECK_VAT = "checkVat"


class CompanyServiceError(Exception):
    """Base class for workflow errors; carries the HTTP status to answer with."""

    status_code = 500
    code = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidArgument(CompanyServiceError):
    status_code = 400
    code = "invalid_argument"


class NotFound(CompanyServiceError):
    status_code = 404
    code = "not_found"


class Conflict(CompanyServiceError):
    status_code = 409
    code = "conflict"


class ServiceUnavailable(CompanyServiceError):
    status_code = 503
    code = "service_unavailable"


def _validation_details(err: ValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in err.errors()
        ]
    }


def parse_company(payload: Any) -> CompanyData:
    """Build a `CompanyData` from a decoded JSON body.

    Raises:
        InvalidArgument: the body is not an object or a field has the wrong type.
    """

    if not isinstance(payload, Mapping):
        raise InvalidArgument("Request body must be a JSON object")
    try:
        return CompanyData.model_validate(payload)
    except ValidationError as e:
        raise InvalidArgument("Invalid company", details=_validation_details(e)) from e


def parse_page_request(page: Any = None, size: Any = None) -> PageRequest:
    """Validate raw paging parameters (None or "" means unset)."""

    raw: Dict[str, Any] = {}
    if page not in (None, ""):
        raw["page"] = page
    if size not in (None, ""):
        raw["size"] = size
    try:
        return PageRequest.model_validate(raw)
    except ValidationError as e:
        raise InvalidArgument("Invalid paging parameters", details=_validation_details(e)) from e


class CompanyService:
    def __init__(self, store: CompanyStore, verifier: VatVerifier, cache: ResponseCache):
        self.store = store
        self.verifier = verifier
        self.cache = cache

    def list_companies(self, page: Any = 0, size: Any = None) -> List[CompanyData]:
        """Return one page ordered by id; `size=None` returns every company."""
        logger.debug("list_companies(%s, %s)", page, size)
        paging = parse_page_request(page, size)
        return self.cache.cached(
            CACHE_ALL,
            paging.cache_key(),
            lambda: self.store.find_all(paging.offset, paging.limit),
        )

    def get_company(self, company_id: int) -> CompanyData:
        logger.debug("get_company(%s)", company_id)
        return self.cache.cached(CACHE_COMPANY, company_id, lambda: self._load(company_id))

    def insert_company(self, candidate: CompanyData) -> CompanyData:
        logger.debug("insert_company(%s)", candidate)
        self._require_fields(candidate)

        existing = self.store.find_by_natural_key(candidate.country_code, candidate.vat_number)
        if existing is not None:
            logger.info("Company already exists: %s", existing)
            raise self._conflict(candidate)

        # Ids are always assigned by the store.
        try:
            saved = self.store.save(candidate.model_copy(update={"id": None}))
        except DuplicateCompanyError as e:
            raise self._conflict(candidate) from e
        finally:
            self.cache.evict_all(CACHE_ALL)

        logger.info("Inserted company id=%s", saved.id)
        return saved

    def update_company(self, candidate: CompanyData) -> CompanyData:
        logger.debug("update_company(%s)", candidate)
        if candidate.id is None:
            raise InvalidArgument("Missing required fields: id", details={"missing": ["id"]})
        self._require_fields(candidate)

        company_id = candidate.id
        if not self._exists(company_id):
            raise self._not_found(company_id)

        # No natural-key re-check here; only the store's constraint can reject a collision.
        try:
            saved = self.store.save(candidate)
        except CompanyNotFoundError as e:
            raise self._not_found(company_id) from e
        except DuplicateCompanyError as e:
            raise self._conflict(candidate) from e
        finally:
            self._evict_company(company_id)

        logger.info("Updated company id=%s", company_id)
        return saved

    def delete_company(self, company_id: int) -> None:
        logger.debug("delete_company(%s)", company_id)
        if not self._exists(company_id):
            raise self._not_found(company_id)
        try:
            self.store.delete_by_id(company_id)
        finally:
            self._evict_company(company_id)
        logger.info("Deleted company id=%s", company_id)

    def check_vat(self, company_id: int) -> CheckVatResult:
        logger.debug("check_vat(%s)", company_id)
        return self.cache.cached(CACHE_CHECK_VAT, company_id, lambda: self._verify(company_id))

    def _exists(self, company_id: int) -> bool:
        # Ids beyond the INTEGER column range cannot be stored, so they never exist.
        return company_id <= MAX_DB_INT and self.store.exists_by_id(company_id)

    def _load(self, company_id: int) -> CompanyData:
        company = self.store.find_by_id(company_id) if company_id <= MAX_DB_INT else None
        if company is None:
            raise self._not_found(company_id)
        return company

    def _verify(self, company_id: int) -> CheckVatResult:
        company = self._load(company_id)
        try:
            return self.verifier.verify(company.country_code, company.vat_number)
        except VatVerificationError as e:
            logger.warning("VAT verification failed for company id=%s: %s", company_id, e)
            raise ServiceUnavailable(str(e)) from e

    def _evict_company(self, company_id: int) -> None:
        self.cache.evict(CACHE_COMPANY, company_id)
        self.cache.evict(CACHE_CHECK_VAT, company_id)
        self.cache.evict_all(CACHE_ALL)

    @staticmethod
    def _require_fields(candidate: CompanyData) -> None:
        missing = candidate.missing_fields()
        if missing:
            raise InvalidArgument(
                "Missing required fields: " + ", ".join(missing),
                details={"missing": missing},
            )

    @staticmethod
    def _not_found(company_id: int) -> NotFound:
        logger.info("Company id=%s not found", company_id)
        return NotFound(f"Company {company_id} not found")

    @staticmethod
    def _conflict(candidate: CompanyData) -> Conflict:
        return Conflict(
            f"Company with countryCode={candidate.country_code} "
            f"vatNumber={candidate.vat_number} already exists",
            details={"countryCode": candidate.country_code, "vatNumber": candidate.vat_number},
        )
