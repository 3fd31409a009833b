#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from datetime import date, datetime
from io import BytesIO
from typing import List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from quote_compare import ComparisonResult, is_best_price

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TITLE = "REPORTE DE COMPARACIÓN DE COTIZACIONES"
ACCENT = "880A0A"
BEST_FILL = PatternFill("solid", fgColor="E6FFE6")
HEADER_BORDER = Border(bottom=Side(style="thin", color="BFBFBF"))
COLUMN_WIDTHS = [36, 20, 10, 14, 44]


def _column_headers(base_currency: str) -> List[str]:
    return ["Proveedor", "Precio Original", "Moneda", "Tasa", f"Precio Comparado ({base_currency})"]


def _fmt_date(d: date) -> str:
    return d.strftime("%d/%m/%Y")


def build_comparison_workbook(
    results: Sequence[ComparisonResult],
    base_currency: str,
    global_exchange_rate: Optional[float],
    generated_at: Optional[datetime] = None,
) -> Workbook:
    generated_at = generated_at or datetime.now()

    wb = Workbook()
    ws = wb.active
    ws.title = "Comparación"

    ws.append([TITLE])
    ws["A1"].font = Font(bold=True, size=16, color=ACCENT)
    ws.append([])
    ws.append([f"Moneda Base: {base_currency}"])
    ws.cell(row=ws.max_row, column=1).font = Font(bold=True, size=12)
    if global_exchange_rate:
        ws.append([f"Tasa Global (USD/VES): {global_exchange_rate:.2f}"])
        ws.cell(row=ws.max_row, column=1).font = Font(bold=True, size=12)
    ws.append([f"Fecha de Generación: {_fmt_date(generated_at)}"])
    ws.cell(row=ws.max_row, column=1).font = Font(color="808080")

    headers = _column_headers(base_currency)
    for comp in results:
        ws.append([])
        ws.append([f"MATERIAL: {comp.material.name} ({comp.material.code})"])
        ws.cell(row=ws.max_row, column=1).font = Font(bold=True, size=12, color=ACCENT)

        ws.append(headers)
        for c in ws[ws.max_row]:
            c.font = Font(bold=True, color=ACCENT)
            c.border = HEADER_BORDER
            c.alignment = Alignment(vertical="center")

        for quote in comp.results:
            best = is_best_price(quote, comp.best_price)
            if quote.is_valid:
                compared = f"{base_currency} {quote.converted_price:.2f}"
            else:
                compared = f"INVÁLIDO ({quote.error})"
            ws.append(
                [
                    quote.supplier_name or "N/A",
                    f"{quote.currency} {quote.unit_price:.2f}",
                    quote.currency,
                    f"{quote.exchange_rate:.4f}" if quote.exchange_rate else "N/A",
                    compared,
                ]
            )
            row = ws[ws.max_row]
            for c in row[1:]:
                c.alignment = Alignment(horizontal="right")
            row[4].font = Font(bold=True, color=ACCENT if best else ("000000" if quote.is_valid else "808080"))
            if best:
                row[0].font = Font(bold=True, color=ACCENT)
                for c in row:
                    c.fill = BEST_FILL

    for i, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width
    return wb


def render_comparison_xlsx(
    results: Sequence[ComparisonResult],
    base_currency: str,
    global_exchange_rate: Optional[float],
    generated_at: Optional[datetime] = None,
) -> bytes:
    wb = build_comparison_workbook(results, base_currency, global_exchange_rate, generated_at)
    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def export_filename(results: Sequence[ComparisonResult], single_material: bool, today: Optional[date] = None) -> str:
    stamp = _fmt_date(today or date.today()).replace("/", "-")
    if single_material and results:
        return f"Comparacion_SC_{results[0].material.code}_{stamp}.xlsx"
    return f"Comparacion_SC_General_{stamp}.xlsx"
