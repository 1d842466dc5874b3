from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, url_for

from api.schemas.api_responses import ok
from api.services.company_service import CompanyService, parse_company

companies_bp = Blueprint("companies", __name__, url_prefix="/companies")

SERVICE_EXTENSION = "company_service"


def get_company_service() -> CompanyService:
    """Return the CompanyService built by `create_app`."""
    return current_app.extensions[SERVICE_EXTENSION]


def _json_body():
    # silent=True: malformed JSON becomes None and is rejected by parse_company.
    return request.get_json(silent=True, force=True)


@companies_bp.get("")
def list_companies():
    """List companies.

    Query params:
    - page: zero-based page number (default 0)
    - size: page size; omit for all companies
    """

    companies = get_company_service().list_companies(
        request.args.get("page"), request.args.get("size")
    )
    return jsonify(ok([c.to_json() for c in companies])), 200


@companies_bp.get("/<int:company_id>")
def get_company(company_id: int):
    company = get_company_service().get_company(company_id)
    return jsonify(ok(company.to_json())), 200


@companies_bp.post("")
def insert_company():
    candidate = parse_company(_json_body())
    company = get_company_service().insert_company(candidate)

    resp = jsonify(ok(company.to_json()))
    resp.status_code = 201
    resp.headers["Location"] = url_for(
        "api.companies.get_company", company_id=company.id, _external=True
    )
    return resp


@companies_bp.put("")
def update_company():
    candidate = parse_company(_json_body())
    company = get_company_service().update_company(candidate)
    return jsonify(ok(company.to_json())), 200


@companies_bp.delete("/<int:company_id>")
def delete_company(company_id: int):
    get_company_service().delete_company(company_id)
    return "", 204


@companies_bp.get("/<int:company_id>/checkVat")
def check_vat(company_id: int):
    result = get_company_service().check_vat(company_id)
    return jsonify(ok(result.to_json())), 200
