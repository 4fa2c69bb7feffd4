"""Default Acumatica field mapping tables (endpoint Default/24.200.001)."""

from dataclasses import dataclass

from core.mapping.engine import Coercion, FieldMappingTable, rule


CUSTOMER_TABLE = FieldMappingTable(
    name="customer",
    key_fields=("customer_id",),
    rules=(
        rule("customer_id", "CustomerID"),
        rule("customer_name", "CustomerName"),
        rule("customer_status", "Status"),
        rule("customer_class", "CustomerClass"),
        rule("credit_limit", "CreditLimit", coercion=Coercion.DECIMAL),
        rule("credit_days_past_due", "CreditDaysPastDue", coercion=Coercion.INTEGER),
        rule("credit_verification_rules", "CreditVerificationRules"),
        rule("credit_hold", "CreditHold", coercion=Coercion.BOOLEAN),
        rule("terms", "Terms", "CreditTerms"),
        rule("currency_id", "CurrencyID"),
        rule("statement_type", "StatementType"),
        rule("print_statements", "PrintStatements", coercion=Coercion.BOOLEAN),
        rule("send_statements_by_email", "SendStatementsByEmail", coercion=Coercion.BOOLEAN),
        rule("primary_contact", "PrimaryContact", "MainContact.DisplayName"),
        rule("phone_1", "MainContact.Phone1", "Phone1"),
        rule("email_address", "MainContact.Email", "Email"),
        rule("price_class_id", "PriceClassID"),
        rule("last_modified_datetime", "LastModifiedDateTime", coercion=Coercion.DATETIME),
    ),
)


INVOICE_TABLE = FieldMappingTable(
    name="invoice",
    key_fields=("reference_number",),
    rules=(
        rule("type", "Type", default="Invoice"),
        rule("reference_number", "ReferenceNbr", coercion=Coercion.REFERENCE),
        rule("status", "Status"),
        rule("invoice_date", "Date", coercion=Coercion.DATE),
        rule("post_period", "PostPeriod"),
        rule("customer", "Customer", "CustomerID"),
        rule("customer_name", "CustomerName"),
        rule("customer_order", "CustomerOrder"),
        rule("currency", "CurrencyID"),
        rule("amount", "Amount", coercion=Coercion.DECIMAL),
        rule("balance", "Balance", coercion=Coercion.DECIMAL),
        rule("due_date", "DueDate", coercion=Coercion.DATE),
        rule("cash_discount_date", "CashDiscountDate", coercion=Coercion.DATE),
        rule("terms", "Terms"),
        rule("description", "Description"),
        rule("last_modified_datetime", "LastModifiedDateTime", coercion=Coercion.DATETIME),
    ),
)


PAYMENT_TABLE = FieldMappingTable(
    name="payment",
    key_fields=("reference_number",),
    rules=(
        rule("type", "Type", default="Payment"),
        rule("reference_number", "ReferenceNbr", coercion=Coercion.REFERENCE),
        rule("status", "Status"),
        rule("hold", "Hold", coercion=Coercion.BOOLEAN),
        rule("application_date", "ApplicationDate", "PaymentDate", coercion=Coercion.DATE),
        rule("payment_amount", "PaymentAmount", coercion=Coercion.DECIMAL),
        rule("available_balance", "UnappliedBalance", coercion=Coercion.DECIMAL),
        rule("customer_id", "CustomerID"),
        rule("customer_name", "CustomerName"),
        rule("payment_method", "PaymentMethod"),
        rule("cash_account", "CashAccount"),
        rule("payment_ref", "PaymentRef"),
        rule("description", "Description"),
        rule("currency_id", "CurrencyID"),
        rule("last_modified_datetime", "LastModifiedDateTime", coercion=Coercion.DATETIME),
    ),
)


APPLICATION_TABLE = FieldMappingTable(
    name="application",
    rules=(
        rule("invoice_reference_number", "DisplayRefNbr", "ReferenceNbr", "AdjustedRefNbr",
             coercion=Coercion.REFERENCE),
        rule("doc_type", "DisplayDocType", "DocType", "AdjustedDocType", default="Invoice"),
        rule("amount_paid", "AmountPaid", coercion=Coercion.DECIMAL),
        rule("balance", "Balance", coercion=Coercion.DECIMAL),
        rule("cash_discount_taken", "CashDiscountTaken", coercion=Coercion.DECIMAL),
        rule("application_date", "ApplicationDate", "Date", coercion=Coercion.DATE),
        rule("application_period", "ApplicationPeriod"),
        rule("post_period", "PostPeriod"),
        rule("due_date", "DueDate", coercion=Coercion.DATE),
        rule("invoice_date", "Date", coercion=Coercion.DATE),
        rule("customer_order", "CustomerOrder"),
        rule("description", "Description"),
        rule("customer_id", "Customer", "CustomerID"),
    ),
)


@dataclass(frozen=True)
class MappingTables:
    """The set of tables a sync service instance works with."""
    customer: FieldMappingTable = CUSTOMER_TABLE
    invoice: FieldMappingTable = INVOICE_TABLE
    payment: FieldMappingTable = PAYMENT_TABLE
    application: FieldMappingTable = APPLICATION_TABLE


DEFAULT_TABLES = MappingTables()
