from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.bdgenai.db import db_session
from app.bdgenai.errors import error_response
from app.bdgenai.modules.search.service import MIN_QUERY_LENGTH, search

bp = Blueprint("search_api", __name__)


@bp.get("/search")
def search_get():
    query = (request.args.get("q") or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return error_response(400, f"Query must be at least {MIN_QUERY_LENGTH} characters")
    results = search(db_session(), query)
    return jsonify({"results": results, "total_results": len(results)})
