#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Multi-currency quote comparison.

A session keeps a list of materials, each with the quotes collected from
suppliers. Results are recomputed from scratch on every call of
compute_comparison_results(): prices are normalized to USD and the lowest
valid price per material is reported.
"""

import math
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterable, List, Optional

from exchange_rate import USD, VES, CURRENCIES, RateSettings, positive_rate

BASE_CURRENCY = USD
DEFAULT_COMPARISON_NAME = "Nueva Comparación"

ERR_INCOMPLETE = "Datos incompletos o inválidos."
ERR_MISSING_RATE = "Falta Tasa de Cambio para VES a USD."
ERR_CALCULATION = "Error de cálculo."

ERR_NOT_AUTHENTICATED = "User not authenticated."
ERR_NO_MATERIALS = "No hay materiales para guardar."
ERR_NO_NAME = "El nombre de la comparación es obligatorio."
ERR_DUPLICATE_MATERIAL = "Este material ya está en la lista de comparación."

QUOTE_FIELDS = ("supplier_id", "unit_price", "currency", "exchange_rate")


class DuplicateMaterialError(ValueError):
    def __init__(self, material_id: str):
        super().__init__(ERR_DUPLICATE_MATERIAL)
        self.material_id = material_id


class QuoteEntryIndexError(IndexError):
    pass


class ComparisonSaveError(ValueError):
    pass


class ComparisonNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class Material:
    id: str
    name: str
    code: str = "N/A"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Material":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            code=str(data.get("code") or "N/A"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "code": self.code}


@dataclass
class QuoteEntry:
    supplier_id: str = ""
    # display copy of the supplier name, refreshed together with supplier_id
    supplier_name: str = ""
    unit_price: float = 0.0
    currency: str = USD
    exchange_rate: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteEntry":
        currency = data.get("currency") or USD
        if currency not in CURRENCIES:
            raise ValueError(f"unsupported currency: {currency!r}")
        return cls(
            supplier_id=str(data.get("supplier_id") or ""),
            supplier_name=str(data.get("supplier_name") or ""),
            unit_price=_to_price(data.get("unit_price")),
            currency=currency,
            exchange_rate=positive_rate(data.get("exchange_rate")) if currency == VES else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "unit_price": self.unit_price,
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
        }


@dataclass
class MaterialComparison:
    material: Material
    quotes: List[QuoteEntry] = field(default_factory=list)


@dataclass(frozen=True)
class AnnotatedQuote:
    supplier_id: str
    supplier_name: str
    unit_price: float
    currency: str
    exchange_rate: Optional[float]
    converted_price: Optional[float]
    is_valid: bool
    error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "unit_price": self.unit_price,
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
            "converted_price": self.converted_price,
            "is_valid": self.is_valid,
            "error": self.error,
        }


@dataclass(frozen=True)
class ComparisonResult:
    material: Material
    results: List[AnnotatedQuote]
    best_price: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material": self.material.to_dict(),
            "results": [
                {**r.to_dict(), "is_best": is_best_price(r, self.best_price)} for r in self.results
            ],
            "best_price": self.best_price,
        }


def _to_price(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0.0
    return price if math.isfinite(price) else 0.0


def _annotate(quote: QuoteEntry, converted: Optional[float], error: Optional[str], rate: Optional[float]) -> AnnotatedQuote:
    return AnnotatedQuote(
        supplier_id=quote.supplier_id,
        supplier_name=quote.supplier_name,
        unit_price=quote.unit_price,
        currency=quote.currency,
        exchange_rate=rate,
        converted_price=converted,
        is_valid=error is None,
        error=error,
    )


def convert_quote(quote: QuoteEntry, global_exchange_rate: Optional[float]) -> AnnotatedQuote:
    rate_to_use = None
    if quote.currency == VES:
        rate_to_use = quote.exchange_rate or global_exchange_rate

    if not quote.supplier_id or not quote.unit_price or quote.unit_price <= 0:
        return _annotate(quote, None, ERR_INCOMPLETE, quote.exchange_rate)

    if quote.currency == VES and (not rate_to_use or rate_to_use <= 0):
        return _annotate(quote, None, ERR_MISSING_RATE, quote.exchange_rate)

    if quote.currency == BASE_CURRENCY:
        converted = quote.unit_price
        rate_used = quote.exchange_rate
    elif quote.currency == VES:
        # VES -> USD: divide by the VES per USD rate
        converted = quote.unit_price / rate_to_use
        rate_used = rate_to_use
    else:
        return _annotate(quote, None, ERR_CALCULATION, quote.exchange_rate)

    if not math.isfinite(converted):
        return _annotate(quote, None, ERR_CALCULATION, quote.exchange_rate)
    return _annotate(quote, converted, None, rate_used)


def compute_comparison_results(
    materials: Iterable[MaterialComparison],
    global_exchange_rate: Optional[float],
) -> List[ComparisonResult]:
    out: List[ComparisonResult] = []
    for comp in materials:
        results = [convert_quote(q, global_exchange_rate) for q in comp.quotes]
        valid = [r.converted_price for r in results if r.is_valid and r.converted_price is not None]
        out.append(
            ComparisonResult(
                material=comp.material,
                results=results,
                best_price=min(valid) if valid else None,
            )
        )
    return out


def is_best_price(entry: AnnotatedQuote, best_price: Optional[float]) -> bool:
    return entry.is_valid and best_price is not None and entry.converted_price == best_price


class ComparisonSession:
    """
    One quote comparison being edited.

    Unsaved while comparison_id is None (save() inserts), bound once it has
    an id (save() overwrites that snapshot).
    """

    def __init__(self, owner_id: Optional[str] = None, rates: Optional[RateSettings] = None):
        self.owner_id = owner_id
        self.rates = rates or RateSettings()
        self.comparison_id: Optional[str] = None
        self.name = DEFAULT_COMPARISON_NAME
        self.materials: List[MaterialComparison] = []
        self.created_at: Optional[str] = None
        self.updated_at: Optional[str] = None
        self._supplier_options: Dict[str, List[Dict[str, Any]]] = {}
        self._supplier_requests: Dict[str, int] = {}
        self._request_seq = count(1)

    @property
    def is_bound(self) -> bool:
        return self.comparison_id is not None

    def _find(self, material_id: str) -> Optional[MaterialComparison]:
        for comp in self.materials:
            if comp.material.id == material_id:
                return comp
        return None

    def _quote_at(self, comp: MaterialComparison, index: int) -> QuoteEntry:
        if not isinstance(index, int) or index < 0 or index >= len(comp.quotes):
            raise QuoteEntryIndexError(
                f"quote index {index} out of range for material {comp.material.id} ({len(comp.quotes)} quotes)"
            )
        return comp.quotes[index]

    # ---------------- materials ----------------

    def add_material(self, material: Material) -> MaterialComparison:
        if self._find(material.id) is not None:
            raise DuplicateMaterialError(material.id)
        comp = MaterialComparison(material=material)
        self.materials.append(comp)
        return comp

    def remove_material(self, material_id: str) -> None:
        self.materials = [m for m in self.materials if m.material.id != material_id]
        self._supplier_options.pop(material_id, None)
        self._supplier_requests.pop(material_id, None)

    # ---------------- quote entries ----------------

    def add_quote_entry(self, material_id: str) -> Optional[QuoteEntry]:
        comp = self._find(material_id)
        if comp is None:
            return None
        currency = self.rates.input_currency
        entry = QuoteEntry(
            currency=currency,
            exchange_rate=self.rates.exchange_rate if currency == VES else None,
        )
        comp.quotes.append(entry)
        return entry

    def update_quote_entry(
        self,
        material_id: str,
        index: int,
        field_name: str,
        value: Any,
        supplier_name: Optional[str] = None,
    ) -> Optional[QuoteEntry]:
        if field_name not in QUOTE_FIELDS:
            raise ValueError(f"unknown quote field: {field_name!r}")
        comp = self._find(material_id)
        if comp is None:
            return None
        entry = self._quote_at(comp, index)

        if field_name == "supplier_id":
            entry.supplier_id = str(value or "")
            if supplier_name is None:
                supplier_name = self.supplier_name_for(material_id, entry.supplier_id)
            entry.supplier_name = supplier_name
        elif field_name == "unit_price":
            entry.unit_price = _to_price(value)
        elif field_name == "currency":
            if value not in CURRENCIES:
                raise ValueError(f"unsupported currency: {value!r}")
            entry.currency = value
            if value == USD:
                entry.exchange_rate = None
        else:
            # only VES entries carry their own rate
            entry.exchange_rate = positive_rate(value) if entry.currency == VES else None
        return entry

    def remove_quote_entry(self, material_id: str, index: int) -> None:
        comp = self._find(material_id)
        if comp is None:
            return
        self._quote_at(comp, index)
        del comp.quotes[index]

    # ---------------- supplier options ----------------

    def request_supplier_options(self, material_id: str) -> int:
        token = next(self._request_seq)
        self._supplier_requests[material_id] = token
        return token

    def apply_supplier_options(self, material_id: str, token: int, suppliers: Iterable[Dict[str, Any]]) -> bool:
        if self._find(material_id) is None or self._supplier_requests.get(material_id) != token:
            return False
        self._supplier_options[material_id] = list(suppliers)
        return True

    def supplier_options(self, material_id: str) -> List[Dict[str, Any]]:
        return list(self._supplier_options.get(material_id, []))

    def supplier_name_for(self, material_id: str, supplier_id: str) -> str:
        for supplier in self._supplier_options.get(material_id, []):
            if str(supplier.get("id")) == supplier_id:
                return str(supplier.get("name") or "")
        return ""

    # ---------------- results ----------------

    def results(self) -> List[ComparisonResult]:
        return compute_comparison_results(self.materials, self.rates.exchange_rate)

    # ---------------- persistence ----------------

    def header(self, name: str) -> Dict[str, Any]:
        return {
            "name": name,
            "base_currency": BASE_CURRENCY,
            "input_currency": self.rates.input_currency,
            "global_exchange_rate": self.rates.exchange_rate,
            "user_id": self.owner_id,
        }

    def items(self) -> List[Dict[str, Any]]:
        return [
            {
                "material_id": comp.material.id,
                "material_name": comp.material.name,
                "material_code": comp.material.code,
                "quotes": [q.to_dict() for q in comp.quotes],
            }
            for comp in self.materials
        ]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.comparison_id,
            **self.header(self.name),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "items": self.items(),
        }

    def save(self, repository, name: Optional[str] = None) -> str:
        name = str(name if name is not None else self.name or "").strip()
        if not self.owner_id:
            raise ComparisonSaveError(ERR_NOT_AUTHENTICATED)
        if not self.materials:
            raise ComparisonSaveError(ERR_NO_MATERIALS)
        if not name:
            raise ComparisonSaveError(ERR_NO_NAME)

        header = self.header(name)
        items = self.items()
        if self.is_bound:
            saved = repository.update(self.comparison_id, header, items)
            if saved is None:
                raise ComparisonNotFoundError(self.comparison_id)
        else:
            saved = repository.create(header, items)

        self.comparison_id = str(saved["id"])
        self.name = name
        return self.comparison_id

    def load(self, repository, snapshot_id: str) -> "ComparisonSession":
        snapshot = repository.get_by_id(snapshot_id)
        if snapshot is None:
            raise ComparisonNotFoundError(snapshot_id)
        self.apply_snapshot(snapshot)
        return self

    def apply_snapshot(self, snapshot: Dict[str, Any]) -> None:
        materials = _materials_from_items(snapshot.get("items") or [])

        rates = RateSettings()
        rates.set_input_currency(snapshot.get("input_currency") or USD)
        rates.set_custom_rate(snapshot.get("global_exchange_rate"))

        self.comparison_id = str(snapshot["id"]) if snapshot.get("id") is not None else None
        if snapshot.get("user_id"):
            self.owner_id = str(snapshot["user_id"])
        self.created_at = snapshot.get("created_at")
        self.updated_at = snapshot.get("updated_at")
        self.name = snapshot.get("name") or DEFAULT_COMPARISON_NAME
        self.rates = rates
        self.materials = materials
        self._supplier_options.clear()
        self._supplier_requests.clear()

    def new_comparison(self) -> None:
        self.comparison_id = None
        self.name = DEFAULT_COMPARISON_NAME
        self.created_at = None
        self.updated_at = None
        self.materials = []
        self.rates.reset()
        self._supplier_options.clear()
        self._supplier_requests.clear()

    @classmethod
    def from_payload(cls, data: Dict[str, Any], owner_id: Optional[str] = None) -> "ComparisonSession":
        """
        Builds a session from a request body:
        {name, input_currency, global_exchange_rate, items: [{material_id, material_name,
        material_code, quotes: [...]}]}. Duplicate materials raise DuplicateMaterialError.
        """
        session = cls(owner_id=owner_id)
        session.rates.set_input_currency(data.get("input_currency") or USD)
        session.rates.set_custom_rate(data.get("global_exchange_rate"))
        if data.get("name"):
            session.name = str(data["name"])
        for comp in _materials_from_items(data.get("items") or [], strict=True):
            session.add_material(comp.material).quotes.extend(comp.quotes)
        return session


def _materials_from_items(items: Iterable[Dict[str, Any]], strict: bool = False) -> List[MaterialComparison]:
    out: List[MaterialComparison] = []
    seen = set()
    for item in items:
        material = Material(
            id=str(item["material_id"]),
            name=str(item.get("material_name") or ""),
            code=str(item.get("material_code") or "N/A"),
        )
        if material.id in seen and not strict:
            continue
        seen.add(material.id)
        out.append(MaterialComparison(material=material, quotes=[QuoteEntry.from_dict(q) for q in item.get("quotes") or []]))
    return out
