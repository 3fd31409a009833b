import unittest

from fakes import InMemoryRepository
from quote_compare import (
    BASE_CURRENCY,
    DEFAULT_COMPARISON_NAME,
    ERR_CALCULATION,
    ERR_INCOMPLETE,
    ERR_MISSING_RATE,
    ERR_NO_MATERIALS,
    ERR_NOT_AUTHENTICATED,
    ComparisonNotFoundError,
    ComparisonSaveError,
    ComparisonSession,
    DuplicateMaterialError,
    Material,
    MaterialComparison,
    QuoteEntry,
    QuoteEntryIndexError,
    compute_comparison_results,
    is_best_price,
)

POLLO = Material(id="m-pollo", name="Pollo", code="POL-01")
HARINA = Material(id="m-harina", name="Harina", code="HAR-02")


class ComputeResultsTests(unittest.TestCase):
    def test_usd_price_is_unchanged(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 12.37, "USD")])
        [res] = compute_comparison_results([comp], None)
        self.assertEqual(res.results[0].converted_price, 12.37)
        self.assertTrue(res.results[0].is_valid)
        self.assertIsNone(res.results[0].error)

    def test_ves_price_is_divided_by_entry_rate(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 1000.0, "VES", 36.5)])
        [res] = compute_comparison_results([comp], 99.0)
        entry = res.results[0]
        self.assertEqual(entry.converted_price, 1000.0 / 36.5)
        self.assertEqual(entry.exchange_rate, 36.5)

    def test_ves_falls_back_to_global_rate(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 800.0, "VES")])
        [res] = compute_comparison_results([comp], 40.0)
        entry = res.results[0]
        self.assertEqual(entry.converted_price, 20.0)
        self.assertEqual(entry.exchange_rate, 40.0)

    def test_ves_without_any_rate_is_invalid(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 800.0, "VES")])
        [res] = compute_comparison_results([comp], None)
        entry = res.results[0]
        self.assertFalse(entry.is_valid)
        self.assertIsNone(entry.converted_price)
        self.assertEqual(entry.error, ERR_MISSING_RATE)

    def test_zero_rate_counts_as_missing(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 800.0, "VES", 0)])
        [res] = compute_comparison_results([comp], 0)
        self.assertEqual(res.results[0].error, ERR_MISSING_RATE)

    def test_missing_supplier_or_bad_price_is_invalid(self):
        quotes = [
            QuoteEntry("", "", 10.0, "USD"),
            QuoteEntry("s1", "A", 0.0, "USD"),
            QuoteEntry("s2", "B", -3.0, "VES", 40.0),
        ]
        [res] = compute_comparison_results([MaterialComparison(POLLO, quotes)], 40.0)
        for entry in res.results:
            self.assertFalse(entry.is_valid)
            self.assertIsNone(entry.converted_price)
            self.assertEqual(entry.error, ERR_INCOMPLETE)
        self.assertIsNone(res.best_price)

    def test_non_finite_result_is_calculation_error(self):
        comp = MaterialComparison(POLLO, [QuoteEntry("s1", "A", 1e308, "VES", 1e-308)])
        [res] = compute_comparison_results([comp], None)
        self.assertFalse(res.results[0].is_valid)
        self.assertEqual(res.results[0].error, ERR_CALCULATION)

    def test_pollo_tie_flags_both_entries(self):
        comp = MaterialComparison(
            POLLO,
            [QuoteEntry("sa", "SupplierA", 10.0, "USD"), QuoteEntry("sb", "SupplierB", 400.0, "VES", 40.0)],
        )
        [res] = compute_comparison_results([comp], None)
        a, b = res.results
        self.assertEqual(a.converted_price, 10.0)
        self.assertEqual(b.converted_price, 10.0)
        self.assertTrue(a.is_valid and b.is_valid)
        self.assertEqual(res.best_price, 10.0)
        self.assertTrue(is_best_price(a, res.best_price))
        self.assertTrue(is_best_price(b, res.best_price))

    def test_harina_without_rate_has_no_best_price(self):
        comp = MaterialComparison(HARINA, [QuoteEntry("sc", "SupplierC", 5.0, "VES")])
        [res] = compute_comparison_results([comp], None)
        entry = res.results[0]
        self.assertFalse(entry.is_valid)
        self.assertIn("Tasa de Cambio", entry.error)
        self.assertIsNone(res.best_price)

    def test_best_price_ignores_invalid_entries(self):
        comp = MaterialComparison(
            POLLO,
            [
                QuoteEntry("s1", "A", 9.0, "USD"),
                QuoteEntry("s2", "B", 100.0, "VES"),
                QuoteEntry("", "", 1.0, "USD"),
                QuoteEntry("s3", "C", 7.5, "USD"),
            ],
        )
        [res] = compute_comparison_results([comp], None)
        self.assertEqual(res.best_price, 7.5)
        flagged = [r.supplier_id for r in res.results if is_best_price(r, res.best_price)]
        self.assertEqual(flagged, ["s3"])

    def test_recompute_is_deterministic(self):
        comps = [
            MaterialComparison(POLLO, [QuoteEntry("s1", "A", 400.0, "VES")]),
            MaterialComparison(HARINA, [QuoteEntry("s2", "B", 3.0, "USD")]),
        ]
        first = compute_comparison_results(comps, 40.0)
        second = compute_comparison_results(comps, 40.0)
        self.assertEqual(first, second)
        self.assertEqual(comps[0].quotes[0].exchange_rate, None)


class SessionEditingTests(unittest.TestCase):
    def setUp(self):
        self.session = ComparisonSession(owner_id="user-1")
        self.session.add_material(POLLO)

    def test_duplicate_material_is_rejected(self):
        with self.assertRaises(DuplicateMaterialError) as ctx:
            self.session.add_material(Material(id="m-pollo", name="Pollo otra vez"))
        self.assertEqual(ctx.exception.material_id, "m-pollo")
        self.assertEqual(len(self.session.materials), 1)
        self.assertEqual(self.session.materials[0].material.name, "Pollo")

    def test_remove_absent_material_is_noop(self):
        self.session.remove_material("does-not-exist")
        self.assertEqual([m.material.id for m in self.session.materials], ["m-pollo"])
        self.session.remove_material("m-pollo")
        self.session.remove_material("m-pollo")
        self.assertEqual(self.session.materials, [])

    def test_add_quote_entry_uses_input_currency_defaults(self):
        entry = self.session.add_quote_entry("m-pollo")
        self.assertEqual(entry.currency, "USD")
        self.assertIsNone(entry.exchange_rate)

        self.session.rates.set_input_currency("VES")
        self.session.rates.set_custom_rate(38.2)
        entry = self.session.add_quote_entry("m-pollo")
        self.assertEqual(entry.currency, "VES")
        self.assertEqual(entry.exchange_rate, 38.2)
        self.assertEqual(len(self.session.materials[0].quotes), 2)

    def test_add_quote_entry_unknown_material_is_noop(self):
        self.assertIsNone(self.session.add_quote_entry("nope"))
        self.assertEqual(self.session.materials[0].quotes, [])

    def test_switching_to_usd_clears_rate(self):
        self.session.add_quote_entry("m-pollo")
        self.session.update_quote_entry("m-pollo", 0, "currency", "VES")
        self.session.update_quote_entry("m-pollo", 0, "exchange_rate", 40)
        self.assertEqual(self.session.materials[0].quotes[0].exchange_rate, 40.0)

        self.session.update_quote_entry("m-pollo", 0, "currency", "USD")
        self.assertIsNone(self.session.materials[0].quotes[0].exchange_rate)

    def test_update_out_of_range_index_raises(self):
        self.session.add_quote_entry("m-pollo")
        with self.assertRaises(QuoteEntryIndexError):
            self.session.update_quote_entry("m-pollo", 1, "unit_price", 5)
        with self.assertRaises(QuoteEntryIndexError):
            self.session.update_quote_entry("m-pollo", -1, "unit_price", 5)
        with self.assertRaises(QuoteEntryIndexError):
            self.session.remove_quote_entry("m-pollo", 3)
        self.assertEqual(len(self.session.materials[0].quotes), 1)

    def test_update_unknown_field_raises(self):
        self.session.add_quote_entry("m-pollo")
        with self.assertRaises(ValueError):
            self.session.update_quote_entry("m-pollo", 0, "converted_price", 1)

    def test_remove_quote_entry_keeps_order(self):
        for price in (1, 2, 3):
            self.session.add_quote_entry("m-pollo")
            self.session.update_quote_entry("m-pollo", price - 1, "unit_price", price)
        self.session.remove_quote_entry("m-pollo", 1)
        self.assertEqual([q.unit_price for q in self.session.materials[0].quotes], [1.0, 3.0])

    def test_supplier_name_follows_supplier_id(self):
        token = self.session.request_supplier_options("m-pollo")
        self.assertTrue(
            self.session.apply_supplier_options("m-pollo", token, [{"id": "s1", "name": "Avícola Norte"}])
        )
        self.session.add_quote_entry("m-pollo")
        self.session.update_quote_entry("m-pollo", 0, "supplier_id", "s1")
        self.assertEqual(self.session.materials[0].quotes[0].supplier_name, "Avícola Norte")

        self.session.update_quote_entry("m-pollo", 0, "supplier_id", "s9", supplier_name="Granja Sur")
        self.assertEqual(self.session.materials[0].quotes[0].supplier_name, "Granja Sur")

        self.session.update_quote_entry("m-pollo", 0, "supplier_id", "unknown")
        self.assertEqual(self.session.materials[0].quotes[0].supplier_name, "")

    def test_stale_supplier_options_are_discarded(self):
        old = self.session.request_supplier_options("m-pollo")
        new = self.session.request_supplier_options("m-pollo")
        self.assertFalse(self.session.apply_supplier_options("m-pollo", old, [{"id": "old"}]))
        self.assertTrue(self.session.apply_supplier_options("m-pollo", new, [{"id": "new"}]))
        self.assertEqual(self.session.supplier_options("m-pollo"), [{"id": "new"}])

        late = self.session.request_supplier_options("m-pollo")
        self.session.remove_material("m-pollo")
        self.assertFalse(self.session.apply_supplier_options("m-pollo", late, [{"id": "late"}]))
        self.assertEqual(self.session.supplier_options("m-pollo"), [])

    def test_new_comparison_resets_state(self):
        self.session.comparison_id = "abc"
        self.session.name = "Octubre"
        self.session.rates.set_input_currency("VES")
        self.session.rates.apply_daily_rate(36.0)
        self.session.new_comparison()
        self.assertFalse(self.session.is_bound)
        self.assertEqual(self.session.name, DEFAULT_COMPARISON_NAME)
        self.assertEqual(self.session.materials, [])
        self.assertEqual(self.session.rates.input_currency, "USD")
        self.assertIsNone(self.session.rates.exchange_rate)


class SessionPersistenceTests(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryRepository()

    def _build(self):
        session = ComparisonSession(owner_id="user-1")
        session.rates.set_input_currency("VES")
        session.rates.set_custom_rate(36.5)

        session.add_material(POLLO)
        session.add_quote_entry(POLLO.id)
        session.update_quote_entry(POLLO.id, 0, "supplier_id", "s1", supplier_name="SupplierA")
        session.update_quote_entry(POLLO.id, 0, "unit_price", 12.5)
        session.update_quote_entry(POLLO.id, 0, "currency", "USD")
        session.add_quote_entry(POLLO.id)
        session.update_quote_entry(POLLO.id, 1, "supplier_id", "s2", supplier_name="SupplierB")
        session.update_quote_entry(POLLO.id, 1, "unit_price", 500)
        session.update_quote_entry(POLLO.id, 1, "exchange_rate", 40)

        session.add_material(HARINA)
        session.add_quote_entry(HARINA.id)
        session.update_quote_entry(HARINA.id, 0, "supplier_id", "s3", supplier_name="SupplierC")
        session.update_quote_entry(HARINA.id, 0, "unit_price", 90)
        return session

    def test_save_requires_owner(self):
        session = ComparisonSession()
        session.add_material(POLLO)
        with self.assertRaises(ComparisonSaveError) as ctx:
            session.save(self.repo, "X")
        self.assertEqual(str(ctx.exception), ERR_NOT_AUTHENTICATED)
        self.assertEqual(self.repo.calls, [])

    def test_save_requires_materials(self):
        session = ComparisonSession(owner_id="user-1")
        with self.assertRaises(ComparisonSaveError) as ctx:
            session.save(self.repo, "X")
        self.assertEqual(str(ctx.exception), ERR_NO_MATERIALS)
        self.assertEqual(self.repo.calls, [])

    def test_round_trip(self):
        session = self._build()
        saved_id = session.save(self.repo, "Mensual")
        self.assertTrue(session.is_bound)

        loaded = ComparisonSession(owner_id="user-1").load(self.repo, saved_id)
        self.assertEqual(loaded.comparison_id, saved_id)
        self.assertEqual(loaded.name, "Mensual")
        self.assertEqual([m.material for m in loaded.materials], [m.material for m in session.materials])
        for original, restored in zip(session.materials, loaded.materials):
            self.assertEqual([q.to_dict() for q in restored.quotes], [q.to_dict() for q in original.quotes])
        self.assertEqual(loaded.rates.input_currency, "VES")
        self.assertEqual(loaded.rates.exchange_rate, 36.5)
        self.assertEqual(loaded.results(), session.results())

    def test_octubre_snapshot(self):
        session = ComparisonSession(owner_id="user-1")
        session.add_material(POLLO)
        session.add_quote_entry(POLLO.id)
        session.update_quote_entry(POLLO.id, 0, "supplier_id", "s1", supplier_name="SupplierA")
        session.update_quote_entry(POLLO.id, 0, "unit_price", 10)

        saved_id = session.save(self.repo, "Octubre")
        snapshot = self.repo.get_by_id(saved_id)
        self.assertEqual(snapshot["name"], "Octubre")
        self.assertEqual(snapshot["base_currency"], BASE_CURRENCY)
        self.assertEqual(
            snapshot["items"][0]["quotes"],
            [{"supplier_id": "s1", "supplier_name": "SupplierA", "unit_price": 10.0, "currency": "USD", "exchange_rate": None}],
        )

        loaded = ComparisonSession().load(self.repo, saved_id)
        self.assertEqual(loaded.name, "Octubre")
        self.assertEqual(loaded.materials[0].quotes[0].to_dict(), session.materials[0].quotes[0].to_dict())

    def test_bound_session_updates_same_snapshot(self):
        session = self._build()
        first = session.save(self.repo, "v1")
        session.remove_material(HARINA.id)
        second = session.save(self.repo, "v2")
        self.assertEqual(first, second)
        self.assertEqual(self.repo.calls, ["create", "update"])
        self.assertEqual(len(self.repo.snapshots), 1)
        self.assertEqual(self.repo.snapshots[first]["name"], "v2")
        self.assertEqual(len(self.repo.snapshots[first]["items"]), 1)

    def test_failed_save_leaves_session_unchanged(self):
        session = self._build()
        self.repo.fail = True
        with self.assertRaises(RuntimeError):
            session.save(self.repo, "Octubre")
        self.assertIsNone(session.comparison_id)
        self.assertEqual(session.name, DEFAULT_COMPARISON_NAME)
        self.assertEqual(len(session.materials), 2)

    def test_load_unknown_id(self):
        session = self._build()
        with self.assertRaises(ComparisonNotFoundError):
            session.load(self.repo, "missing")
        self.assertEqual(len(session.materials), 2)
        self.assertIsNone(session.comparison_id)

    def test_rate_on_usd_entry_is_not_kept(self):
        session = ComparisonSession(owner_id="user-1")
        session.add_material(POLLO)
        session.add_quote_entry(POLLO.id)
        session.update_quote_entry(POLLO.id, 0, "supplier_id", "s1", supplier_name="SupplierA")
        session.update_quote_entry(POLLO.id, 0, "unit_price", 12)
        entry = session.update_quote_entry(POLLO.id, 0, "exchange_rate", 40)
        self.assertEqual(entry.currency, "USD")
        self.assertIsNone(entry.exchange_rate)

        saved_id = session.save(self.repo, "USD only")
        loaded = ComparisonSession(owner_id="user-1").load(self.repo, saved_id)
        self.assertEqual(loaded.materials[0].quotes[0].to_dict(), session.materials[0].quotes[0].to_dict())

    def test_load_reports_snapshot_owner_and_timestamps(self):
        saved_id = self._build().save(self.repo, "Mensual")
        created_at = self.repo.snapshots[saved_id]["created_at"]

        loaded = ComparisonSession(owner_id="user-2").load(self.repo, saved_id)
        payload = loaded.to_payload()
        self.assertEqual(payload["user_id"], "user-1")
        self.assertEqual(payload["created_at"], created_at)
        self.assertIsNone(payload["updated_at"])

        loaded.new_comparison()
        self.assertIsNone(loaded.to_payload()["created_at"])

    def test_from_payload_rejects_duplicates(self):
        item = {"material_id": "m1", "material_name": "Pollo", "quotes": []}
        with self.assertRaises(DuplicateMaterialError):
            ComparisonSession.from_payload({"items": [item, dict(item)]})


if __name__ == "__main__":
    unittest.main()
