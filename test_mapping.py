"""
Field Mapping and OData Filter Tests

Covers:
1. Reference number normalization
2. Mapping tables (unwrap, fallbacks, coercion, business keys)
3. Acumatica timestamp parsing (7 fractional digits)
4. OData datetimeoffset filters for incremental and date-range windows
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import customer, invoice, payment, wrap


class TestReferenceNormalization:

    @pytest.mark.parametrize("raw,expected", [
        ("1234", "001234"),
        ("000123", "000123"),
        ("1", "000001"),
        ("1234567", "1234567"),
        ("INV-1", "INV-1"),
        (" 42 ", "000042"),
        (1234, "001234"),
    ])
    def test_normalize_reference(self, raw, expected):
        from core.mapping.engine import normalize_reference
        assert normalize_reference(raw) == expected

    def test_normalization_is_idempotent(self):
        from core.mapping.engine import normalize_reference

        for raw in ["7", "77", "7777", "777777", "ABC", "12-34"]:
            once = normalize_reference(raw)
            assert normalize_reference(once) == once

    def test_none_passes_through(self):
        from core.mapping.engine import normalize_reference
        assert normalize_reference(None) is None


class TestFieldValues:

    def test_unwrap(self):
        from core.mapping.engine import unwrap

        assert unwrap({"value": "x"}) == "x"
        assert unwrap({"value": None}) is None
        assert unwrap("plain") == "plain"
        assert unwrap({"other": 1}) == {"other": 1}

    def test_get_path_nested(self):
        from core.mapping.engine import get_path

        record = {"MainContact": {"Email": {"value": "ap@acme.com"}}, "CustomerID": {"value": "C1"}}
        assert get_path(record, "MainContact.Email") == "ap@acme.com"
        assert get_path(record, "CustomerID") == "C1"
        assert get_path(record, "MainContact.Phone1") is None
        assert get_path(record, "CustomerID.value.deeper") is None

    def test_parse_seven_digit_fraction(self):
        from core.mapping.engine import parse_erp_datetime

        parsed = parse_erp_datetime("2024-05-01T10:20:30.1234567+00:00")
        assert parsed.microsecond == 123456
        assert parsed.hour == 10

    def test_parse_zulu_and_short_fraction(self):
        from core.mapping.engine import parse_erp_datetime

        assert parse_erp_datetime("2024-05-01T10:20:30.5Z").microsecond == 500000
        assert parse_erp_datetime("") is None


class TestMappingTables:

    def test_customer_table(self):
        from core.mapping.tables import CUSTOMER_TABLE

        data = customer(
            "C001",
            CreditLimit="1,500.50",
            CreditHold=False,
            CreditDaysPastDue="30",
            MainContact={"Email": {"value": "ap@acme.com"}, "DisplayName": {"value": "Jane"}},
        )
        values = CUSTOMER_TABLE.apply(data)

        assert values["customer_id"] == "C001"
        assert values["credit_limit"] == Decimal("1500.50")
        assert values["credit_hold"] is False
        assert values["credit_days_past_due"] == 30
        assert values["email_address"] == "ap@acme.com"
        assert values["primary_contact"] == "Jane"
        assert values["last_modified_datetime"].microsecond == 123456

    def test_invoice_reference_padded(self):
        from core.mapping.tables import INVOICE_TABLE

        values = INVOICE_TABLE.apply(invoice("4521"))
        assert values["reference_number"] == "004521"
        assert values["invoice_date"] == date(2024, 5, 1)
        assert values["amount"] == Decimal("100.00")
        assert values["customer"] == "C001"

    def test_payment_date_fallback(self):
        from core.mapping.tables import PAYMENT_TABLE

        data = wrap(Type="Payment", ReferenceNbr="000010", PaymentDate="2024-06-02T00:00:00")
        assert PAYMENT_TABLE.apply(data)["application_date"] == date(2024, 6, 2)

    def test_type_default(self):
        from core.mapping.tables import PAYMENT_TABLE

        assert PAYMENT_TABLE.apply(wrap(ReferenceNbr="000010"))["type"] == "Payment"

    def test_missing_business_key(self):
        from core.mapping.tables import INVOICE_TABLE

        with pytest.raises(ValueError) as exc:
            INVOICE_TABLE.apply(wrap(Type="Invoice", Status="Open"))
        assert "reference_number" in str(exc.value)

    def test_bad_decimal_names_the_column(self):
        from core.mapping.tables import PAYMENT_TABLE

        with pytest.raises(ValueError) as exc:
            PAYMENT_TABLE.apply(payment("000010", PaymentAmount="twelve"))
        assert "payment.payment_amount" in str(exc.value)

    def test_extend_overrides_and_adds(self):
        from core.mapping.engine import Coercion, rule
        from core.mapping.tables import INVOICE_TABLE

        table = INVOICE_TABLE.extend(
            rule("status", "StatusOverride"),
            rule("discount_total", "DiscountTotal", coercion=Coercion.DECIMAL),
        )
        values = table.apply(invoice("000001", StatusOverride="On Hold", DiscountTotal="5"))

        assert values["status"] == "On Hold"
        assert values["discount_total"] == Decimal("5")
        assert "discount_total" not in INVOICE_TABLE.local_fields
        assert table.local_fields.count("status") == 1

    def test_map_record_keeps_raw_payload(self):
        from core.mapping.tables import INVOICE_TABLE
        from core.models.mirror import InvoiceRecord
        from sync.records import map_record

        data = invoice("000007", Custom={"UsrField": {"value": 1}})
        record = map_record(InvoiceRecord, INVOICE_TABLE, data)

        assert record.business_key() == ("Invoice", "000007")
        assert record.raw_data["Custom"] == {"UsrField": {"value": 1}}


class TestODataFilters:

    def test_datetimeoffset_truncates_to_seconds(self):
        from connectors.acumatica.odata import format_datetimeoffset

        value = datetime(2024, 5, 1, 10, 20, 30, 999999)
        assert format_datetimeoffset(value) == "datetimeoffset'2024-05-01T10:20:30'"

    def test_aware_values_converted_to_utc(self):
        from datetime import timedelta, timezone
        from connectors.acumatica.odata import format_datetimeoffset

        value = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_datetimeoffset(value) == "datetimeoffset'2024-05-01T10:00:00'"

    def test_incremental_uses_strict_gt(self):
        from connectors.acumatica.odata import modified_since

        assert modified_since(datetime(2024, 5, 1, 9, 0)) == (
            "LastModifiedDateTime gt datetimeoffset'2024-05-01T09:00:00'"
        )

    def test_date_range_is_inclusive(self):
        from connectors.acumatica.odata import date_between, parse_boundary

        start = parse_boundary("2024-05-01")
        end = parse_boundary("2024-05-31", end_of_day=True)
        assert date_between(start, end) == (
            "LastModifiedDateTime ge datetimeoffset'2024-05-01T00:00:00' and "
            "LastModifiedDateTime le datetimeoffset'2024-05-31T23:59:59'"
        )

    def test_application_date_field(self):
        from connectors.acumatica.odata import date_between

        text = date_between(datetime(2024, 5, 1), datetime(2024, 5, 2), field="ApplicationDate")
        assert text.startswith("ApplicationDate ge ")

    def test_quote_and_combine(self):
        from connectors.acumatica.odata import and_filters, quote

        assert quote("O'Brien") == "'O''Brien'"
        assert and_filters("a eq 1", None, "b eq 2") == "a eq 1 and b eq 2"
        assert and_filters(None) is None

    def test_parse_boundary_timestamp(self):
        from connectors.acumatica.odata import parse_boundary

        assert parse_boundary("2024-05-01T08:30:00Z") == datetime(2024, 5, 1, 8, 30)
        assert parse_boundary(date(2024, 5, 1), end_of_day=True) == datetime(2024, 5, 1, 23, 59, 59)
