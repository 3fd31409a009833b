#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extras import Json


def _json_safe(v: Any) -> Any:
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, datetime):
        return v.isoformat()
    return v


def _row_dict(row) -> Dict[str, Any]:
    return {k: _json_safe(v) for k, v in dict(row).items()}


def _insert_items(cur, comparison_id: str, items: List[Dict[str, Any]]) -> None:
    if not items:
        return
    psycopg2.extras.execute_values(
        cur,
        """
        INSERT INTO quote_comparison_items
          (comparison_id, position, material_id, material_name, material_code, quotes)
        VALUES %s;
        """,
        [
            (
                comparison_id,
                pos,
                item["material_id"],
                item.get("material_name") or "",
                item.get("material_code"),
                Json(item.get("quotes") or []),
            )
            for pos, item in enumerate(items)
        ],
        page_size=500,
    )


def create_quote_comparison(conn, header: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO quote_comparisons (user_id, name, base_currency, input_currency, global_exchange_rate)
            VALUES (%(user_id)s, %(name)s, %(base_currency)s, %(input_currency)s, %(global_exchange_rate)s)
            RETURNING id, name, created_at;
            """,
            header,
        )
        created = cur.fetchone()
        _insert_items(cur, created["id"], items)
    return _row_dict(created)


def update_quote_comparison(
    conn, comparison_id: str, header: Dict[str, Any], items: List[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE quote_comparisons
            SET name=%(name)s, base_currency=%(base_currency)s, input_currency=%(input_currency)s,
                global_exchange_rate=%(global_exchange_rate)s, updated_at=now()
            WHERE id=%(id)s
            RETURNING id, name, created_at;
            """,
            {**header, "id": comparison_id},
        )
        updated = cur.fetchone()
        if not updated:
            return None
        cur.execute("DELETE FROM quote_comparison_items WHERE comparison_id=%s;", (comparison_id,))
        _insert_items(cur, comparison_id, items)
    return _row_dict(updated)


def get_quote_comparison_by_id(conn, comparison_id: str) -> Optional[Dict[str, Any]]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, name, base_currency, input_currency, global_exchange_rate,
                   created_at, updated_at
            FROM quote_comparisons
            WHERE id=%s;
            """,
            (comparison_id,),
        )
        header = cur.fetchone()
        if not header:
            return None

        cur.execute(
            """
            SELECT qci.material_id, qci.material_name,
                   COALESCE(m.code, qci.material_code, 'N/A') AS material_code,
                   qci.quotes
            FROM quote_comparison_items qci
            LEFT JOIN materials m ON m.id = qci.material_id
            WHERE qci.comparison_id=%s
            ORDER BY qci.position ASC, qci.id ASC;
            """,
            (comparison_id,),
        )
        items = [_row_dict(r) for r in cur.fetchall()]

    snapshot = _row_dict(header)
    snapshot["items"] = items
    return snapshot


def delete_quote_comparison(conn, comparison_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM quote_comparisons WHERE id=%s;", (comparison_id,))
        return cur.rowcount > 0


def get_all_quote_comparisons(conn, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT qc.id, qc.user_id, qc.name, qc.base_currency, qc.input_currency,
                   qc.global_exchange_rate, qc.created_at, qc.updated_at,
                   COALESCE(items.materials_count, 0) AS materials_count
            FROM quote_comparisons qc
            LEFT JOIN LATERAL (
                SELECT count(*) AS materials_count
                FROM quote_comparison_items qci WHERE qci.comparison_id = qc.id
            ) items ON TRUE
            WHERE (%(user_id)s IS NULL OR qc.user_id = %(user_id)s)
            ORDER BY qc.created_at DESC, qc.id DESC;
            """,
            {"user_id": user_id},
        )
        return [_row_dict(r) for r in cur.fetchall()]


class ComparisonRepository:
    """Runs each store call in its own transaction on a fresh connection."""

    def __init__(self, connect: Callable[[], Any]):
        self._connect = connect

    def _run(self, fn, *args):
        conn = self._connect()
        try:
            result = fn(conn, *args)
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create(self, header: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._run(create_quote_comparison, header, items)

    def update(self, comparison_id: str, header: Dict[str, Any], items: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return self._run(update_quote_comparison, comparison_id, header, items)

    def get_by_id(self, comparison_id: str) -> Optional[Dict[str, Any]]:
        return self._run(get_quote_comparison_by_id, comparison_id)

    def delete(self, comparison_id: str) -> bool:
        return self._run(delete_quote_comparison, comparison_id)

    def get_all(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._run(get_all_quote_comparisons, user_id)
