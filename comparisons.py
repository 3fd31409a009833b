#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from io import BytesIO
from typing import Any, Dict, List, Optional
from uuid import UUID

from flask import Blueprint, current_app, jsonify, request, send_file

from catalog import get_suppliers_by_material, search_materials
from comparison_export import XLSX_MIMETYPE, export_filename, render_comparison_xlsx
from exchange_rate import fetch_daily_rate
from quote_compare import (
    BASE_CURRENCY,
    ComparisonNotFoundError,
    ComparisonResult,
    ComparisonSaveError,
    ComparisonSession,
    DuplicateMaterialError,
)

comparisons_bp = Blueprint("comparisons", __name__)


def _valid_id(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _owner_id() -> Optional[str]:
    return (request.headers.get("X-User-Id") or "").strip() or None


def _repository():
    return current_app.comparison_repository


def _session_from_body(data: Dict[str, Any]) -> ComparisonSession:
    return ComparisonSession.from_payload(data, owner_id=_owner_id())


def _serialize_session(session: ComparisonSession) -> Dict[str, Any]:
    return {
        "comparison": session.to_payload(),
        "rates": session.rates.to_dict(),
        "results": [r.to_dict() for r in session.results()],
    }


def _send_xlsx(session: ComparisonSession, material_id: Optional[str]):
    results: List[ComparisonResult] = session.results()
    if material_id:
        results = [r for r in results if r.material.id == material_id]
        if not results:
            return jsonify({"ok": False, "error": "material not found"}), 404
    # header shows the global rate only while the input currency is VES
    data = render_comparison_xlsx(results, BASE_CURRENCY, session.rates.exchange_rate)
    bio = BytesIO(data)
    bio.seek(0)
    return send_file(
        bio,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=export_filename(results, single_material=bool(material_id)),
    )


# ---------------- lookups ----------------

@comparisons_bp.route("/api/materials/search", methods=["GET"])
def api_materials_search():
    q = request.args.get("q") or ""
    limit = request.args.get("limit", type=int) or 10
    try:
        with current_app.db_connect() as conn:
            materials = search_materials(conn, q, limit=limit)
        return jsonify({"ok": True, "materials": materials})
    except Exception as e:
        current_app.logger.exception("Failed to search materials")
        return jsonify({"ok": False, "error": "failed to search materials", "details": str(e)}), 500


@comparisons_bp.route("/api/materials/<material_id>/suppliers", methods=["GET"])
def api_material_suppliers(material_id: str):
    # an empty list keeps the supplier selector usable (disabled) on the client
    if not _valid_id(material_id):
        return jsonify({"ok": True, "material_id": material_id, "suppliers": []})
    try:
        with current_app.db_connect() as conn:
            suppliers = get_suppliers_by_material(conn, material_id)
    except Exception:
        current_app.logger.exception("Failed to load suppliers for material %s", material_id)
        suppliers = []
    return jsonify({"ok": True, "material_id": material_id, "suppliers": suppliers})


@comparisons_bp.route("/api/exchange-rate/daily", methods=["GET"])
def api_daily_rate():
    rate = fetch_daily_rate()
    if rate is None:
        return jsonify({"ok": False, "error": "daily rate unavailable", "rate": None})
    return jsonify({"ok": True, "rate": rate, "currency_pair": "VES/USD"})


# ---------------- quote comparisons ----------------

@comparisons_bp.route("/api/quote-comparisons/compute", methods=["POST"])
def api_comparisons_compute():
    data = request.get_json(silent=True) or {}
    try:
        session = _session_from_body(data)
    except DuplicateMaterialError as e:
        return jsonify({"ok": False, "error": str(e), "material_id": e.material_id}), 400
    except (KeyError, ValueError) as e:
        return jsonify({"ok": False, "error": "invalid comparison", "details": str(e)}), 400
    return jsonify({"ok": True, **_serialize_session(session)})


@comparisons_bp.route("/api/quote-comparisons", methods=["GET"])
def api_comparisons_list():
    try:
        rows = _repository().get_all(_owner_id())
        return jsonify({"ok": True, "comparisons": rows})
    except Exception as e:
        current_app.logger.exception("Failed to list quote comparisons")
        return jsonify({"ok": False, "error": "failed to load comparisons", "details": str(e)}), 500


def _save(data: Dict[str, Any], comparison_id: Optional[str]):
    try:
        session = _session_from_body(data)
    except DuplicateMaterialError as e:
        return jsonify({"ok": False, "error": str(e), "material_id": e.material_id}), 400
    except (KeyError, ValueError) as e:
        return jsonify({"ok": False, "error": "invalid comparison", "details": str(e)}), 400

    session.comparison_id = comparison_id
    try:
        new_id = session.save(_repository(), data.get("name"))
    except ComparisonSaveError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except ComparisonNotFoundError:
        return jsonify({"ok": False, "error": "not found"}), 404
    except Exception as e:
        current_app.logger.exception("Failed to save quote comparison %s", comparison_id)
        return jsonify({"ok": False, "error": "Error al guardar la comparación.", "details": str(e)}), 500

    current_app.logger.info("Quote comparison %s saved (%d materials)", new_id, len(session.materials))
    return jsonify({"ok": True, "id": new_id, **_serialize_session(session)})


@comparisons_bp.route("/api/quote-comparisons", methods=["POST"])
def api_comparisons_create():
    return _save(request.get_json(silent=True) or {}, None)


@comparisons_bp.route("/api/quote-comparisons/<comparison_id>", methods=["PUT"])
def api_comparisons_update(comparison_id: str):
    if not _valid_id(comparison_id):
        return jsonify({"ok": False, "error": "not found"}), 404
    return _save(request.get_json(silent=True) or {}, comparison_id)


def _load(comparison_id: str) -> ComparisonSession:
    if not _valid_id(comparison_id):
        raise ComparisonNotFoundError(comparison_id)
    return ComparisonSession(owner_id=_owner_id()).load(_repository(), comparison_id)


@comparisons_bp.route("/api/quote-comparisons/<comparison_id>", methods=["GET"])
def api_comparisons_get(comparison_id: str):
    try:
        session = _load(comparison_id)
    except ComparisonNotFoundError:
        return jsonify({"ok": False, "error": "not found"}), 404
    except Exception as e:
        current_app.logger.exception("Failed to load quote comparison %s", comparison_id)
        return jsonify({"ok": False, "error": "failed to load comparison", "details": str(e)}), 500
    return jsonify({"ok": True, **_serialize_session(session)})


@comparisons_bp.route("/api/quote-comparisons/<comparison_id>", methods=["DELETE"])
def api_comparisons_delete(comparison_id: str):
    if not _valid_id(comparison_id):
        return jsonify({"ok": False, "error": "not found"}), 404
    try:
        deleted = _repository().delete(comparison_id)
    except Exception as e:
        current_app.logger.exception("Failed to delete quote comparison %s", comparison_id)
        return jsonify({"ok": False, "error": "failed to delete comparison", "details": str(e)}), 500
    if not deleted:
        return jsonify({"ok": False, "error": "not found"}), 404
    return jsonify({"ok": True, "id": comparison_id})


@comparisons_bp.route("/api/quote-comparisons/export", methods=["POST"])
def api_comparisons_export():
    data = request.get_json(silent=True) or {}
    try:
        session = _session_from_body(data)
    except DuplicateMaterialError as e:
        return jsonify({"ok": False, "error": str(e), "material_id": e.material_id}), 400
    except (KeyError, ValueError) as e:
        return jsonify({"ok": False, "error": "invalid comparison", "details": str(e)}), 400
    return _send_xlsx(session, data.get("material_id"))


@comparisons_bp.route("/api/quote-comparisons/<comparison_id>/export", methods=["GET"])
def api_comparisons_export_saved(comparison_id: str):
    try:
        session = _load(comparison_id)
    except ComparisonNotFoundError:
        return jsonify({"ok": False, "error": "not found"}), 404
    except Exception as e:
        current_app.logger.exception("Failed to export quote comparison %s", comparison_id)
        return jsonify({"ok": False, "error": "failed to export", "details": str(e)}), 500
    return _send_xlsx(session, request.args.get("material_id"))
