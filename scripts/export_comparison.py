#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import argparse
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from comparison_export import export_filename, render_comparison_xlsx
from comparison_store import ComparisonRepository
from database import db_connect
from quote_compare import BASE_CURRENCY, ComparisonNotFoundError, ComparisonSession


def main() -> int:
    parser = argparse.ArgumentParser(description="Export a saved quote comparison to XLSX")
    parser.add_argument("comparison_id")
    parser.add_argument("--material-id", default=None, help="export a single material")
    parser.add_argument("--out-dir", default=".")
    args = parser.parse_args()

    try:
        session = ComparisonSession().load(ComparisonRepository(db_connect), args.comparison_id)
    except ComparisonNotFoundError:
        print(f"Comparison {args.comparison_id} not found.", file=sys.stderr)
        return 1

    results = session.results()
    if args.material_id:
        results = [r for r in results if r.material.id == args.material_id]
        if not results:
            print(f"Material {args.material_id} is not in the comparison.", file=sys.stderr)
            return 1

    # the global rate is None unless the comparison was entered in VES; the header then omits it
    out_path = os.path.join(args.out_dir, export_filename(results, single_material=bool(args.material_id)))
    with open(out_path, "wb") as f:
        f.write(render_comparison_xlsx(results, BASE_CURRENCY, session.rates.exchange_rate))

    valid = sum(1 for r in results for q in r.results if q.is_valid)
    total = sum(len(r.results) for r in results)
    print(f"Exported {len(results)} materials ({valid}/{total} valid quotes) to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
