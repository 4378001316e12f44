"""
Tests for clinic_billing.services.invoice_ledger.

Which visits already have an invoice: marker in notes, structured
source_visit_id, or both.
"""

from clinic_billing.services.invoice_ledger import (
    extract_visit_id,
    load_invoiced_visit_ids,
    visit_marker,
)

from factories import make_invoice, make_visit


class TestExtractVisitId:

    def test_reads_marker_inside_generated_notes(self):
        notes = "Auto-generated from visit on 05/03/2024 (visit ID: 42)"
        assert extract_visit_id(notes) == 42

    def test_marker_anywhere_in_edited_notes(self):
        notes = "Patient asked for duplicate copy. visit ID: 7 -- reprinted"
        assert extract_visit_id(notes) == 7

    def test_no_marker(self):
        assert extract_visit_id("Counter sale") is None
        assert extract_visit_id("") is None
        assert extract_visit_id(None) is None

    def test_marker_format(self):
        assert visit_marker(15) == "visit ID: 15"
        assert extract_visit_id(visit_marker(15)) == 15


class TestLoadInvoicedVisitIds:

    def test_collects_markers_and_source_links(self, db):
        make_invoice(db, "INV-000001", notes="Auto-generated (visit ID: 3)")
        v = make_visit(db, amount=100)
        make_invoice(db, "INV-000002", notes="no marker here", source_visit_id=v.id)
        make_invoice(db, "INV-000003", notes="Walk-in sale")
        make_invoice(db, "INV-000004", notes=None)
        db.commit()

        assert load_invoiced_visit_ids(db) == {3, v.id}

    def test_empty_ledger(self, db):
        assert load_invoiced_visit_ids(db) == set()

    def test_marker_survives_other_edits(self, db):
        inv = make_invoice(db, "INV-000010", notes="(visit ID: 42)")
        db.commit()

        inv.customer_name = "Renamed Customer"
        inv.invoice_number = "INV-999999"
        inv.notes = "Customer called, fixed name. (visit ID: 42)"
        db.commit()

        assert 42 in load_invoiced_visit_ids(db)
