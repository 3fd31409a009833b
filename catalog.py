#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import re
from typing import Any, Dict, List, Optional

import psycopg2.extras

MAX_SEARCH_LIMIT = 50


def normalize_query(val: Optional[str]) -> str:
    """Collapses whitespace and escapes LIKE wildcards."""
    if val is None:
        return ""
    text = re.sub(r"\s+", " ", str(val)).strip()
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_materials(conn, query: Optional[str], limit: int = 10) -> List[Dict[str, Any]]:
    q = normalize_query(query)
    limit = max(1, min(int(limit), MAX_SEARCH_LIMIT))
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        if not q:
            cur.execute(
                """
                SELECT id, name, code, category, unit
                FROM materials
                ORDER BY name ASC
                LIMIT %s;
                """,
                (limit,),
            )
        else:
            pattern = f"%{q}%"
            cur.execute(
                """
                SELECT id, name, code, category, unit
                FROM materials
                WHERE name ILIKE %s OR code ILIKE %s
                ORDER BY name ASC
                LIMIT %s;
                """,
                (pattern, pattern, limit),
            )
        return [{k: (str(v) if k == "id" else v) for k, v in dict(r).items()} for r in cur.fetchall()]


def get_suppliers_by_material(conn, material_id: str) -> List[Dict[str, Any]]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT s.id, s.name, s.code, s.rif, sm.specification
            FROM supplier_materials sm
            JOIN suppliers s ON s.id = sm.supplier_id
            WHERE sm.material_id=%s
            ORDER BY s.name NULLS LAST, s.id;
            """,
            (material_id,),
        )
        return [{k: (str(v) if k == "id" else v) for k, v in dict(r).items()} for r in cur.fetchall()]
