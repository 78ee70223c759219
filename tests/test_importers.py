"""
Unit tests for statement parsing and line classification.
"""

from datetime import date
from decimal import Decimal
import random

import pytest

from cardrecon.errors import FormatError
from cardrecon.importers import (
    AGGREGATE_PAYMENT, PURCHASE, REFUND,
    classify_line, fold, parse_installment, read_statement_csv, statement_fingerprint,
)
from cardrecon.matcher import net_total

from conftest import INSTALLMENT_CSV, REFUND_CSV


class TestReadStatementCsv:

    def test_parses_lines_in_order(self):
        lines = read_statement_csv(REFUND_CSV)

        assert [l.description for l in lines] == ["Estorno de compra", "Bourbon Ipiranga", "Pagamento recebido"]
        assert [l.line_number for l in lines] == [2, 3, 4]
        assert lines[0].date == date(2025, 11, 15)

    def test_roles(self):
        lines = read_statement_csv(REFUND_CSV)
        assert [l.role for l in lines] == [REFUND, PURCHASE, AGGREGATE_PAYMENT]

    def test_amounts_keep_their_sign(self):
        lines = read_statement_csv(REFUND_CSV)
        assert [l.amount for l in lines] == [Decimal("-253.82"), Decimal("620.73"), Decimal("-366.91")]

    def test_description_header_alias(self):
        lines = read_statement_csv("Date, Description ,Amount\n2025-11-06,Mercado Silva,8.99\n")
        assert lines[0].description == "Mercado Silva"

    def test_quoted_description_with_comma(self):
        lines = read_statement_csv('date,title,amount\n2025-11-06,"Loja, Centro",10.00\n')
        assert lines[0].description == "Loja, Centro"

    def test_installment_line(self):
        lines = read_statement_csv(INSTALLMENT_CSV)
        first = lines[0]
        assert first.installment_current == 1
        assert first.installment_total == 3
        assert first.role == PURCHASE
        assert lines[2].installment_current == 2

    @pytest.mark.parametrize("raw, message", [
        ("", "empty"),
        ("date,title,amount\n", "no transactions"),
        ("wrong,columns,here\ndata1,data2,data3\n", "invalid format"),
        ("date,title\n2025-11-06,Mercado\n", "invalid format"),
        ("date,title,amount,extra\n2025-11-06,Mercado,1.00,x\n", "invalid format"),
    ])
    def test_layout_errors(self, raw, message):
        with pytest.raises(FormatError, match=message):
            read_statement_csv(raw)

    def test_bad_date_names_the_line(self):
        raw = "date,title,amount\n2025-11-06,Mercado,1.00\n06/11/2025,Padaria,2.00\n"
        with pytest.raises(FormatError) as exc:
            read_statement_csv(raw)
        assert exc.value.line == 3
        assert "invalid date" in str(exc.value)

    @pytest.mark.parametrize("amount", ["abc", "1,50", "1.234", "", "R$ 10"])
    def test_bad_amount_names_the_line(self, amount):
        raw = f'date,title,amount\n2025-11-06,Mercado,"{amount}"\n'
        with pytest.raises(FormatError) as exc:
            read_statement_csv(raw)
        assert exc.value.line == 2

    def test_empty_description(self):
        with pytest.raises(FormatError, match="empty description"):
            read_statement_csv("date,title,amount\n2025-11-06,  ,1.00\n")


class TestClassifyLine:

    @pytest.mark.parametrize("description", [
        "Pagamento recebido",
        "PAGAMENTO RECEBIDO",
        "Pagamento Recebído",
        "Payment received - thank you",
    ])
    def test_payment_marker_is_case_and_accent_insensitive(self, description):
        line = classify_line(2, date(2025, 11, 4), description, Decimal("-10.00"))
        assert line.role == AGGREGATE_PAYMENT

    def test_refund_by_sign(self):
        line = classify_line(2, date(2025, 11, 4), "Estorno", Decimal("-1.00"))
        assert line.role == REFUND

    def test_zero_amount_is_purchase(self):
        line = classify_line(2, date(2025, 11, 4), "Ajuste", Decimal("0.00"))
        assert line.role == PURCHASE

    def test_installment_refund(self):
        line = classify_line(2, date(2025, 11, 4), "Estorno - Parcela 2/4", Decimal("-50.00"))
        assert line.role == REFUND
        assert (line.installment_current, line.installment_total) == (2, 4)

    def test_custom_markers(self):
        line = classify_line(2, date(2025, 11, 4), "Bill settled", Decimal("-5.00"), markers=("bill settled",))
        assert line.role == AGGREGATE_PAYMENT

    def test_hospital_installment(self):
        line = classify_line(2, date(2025, 11, 8), "Hospital - Parcela 1/3", Decimal("196.84"))
        assert line.installment_current == 1
        assert line.installment_total == 3
        assert line.role == PURCHASE


class TestParseInstallment:

    @pytest.mark.parametrize("description, expected", [
        ("Amazon - Parcela 2/6", (2, 6)),
        ("Midea Com - Parcela 1/12", (1, 12)),
        ("Loja - PARCELA 3 / 10", (3, 10)),
        ("Loja 3 / 10", None),
        ("UBER 03/11", None),
        ("Compra 05/11/2025", None),
        ("Parcela 7/3", None),
        ("Netflix", None),
    ])
    def test_markers(self, description, expected):
        assert parse_installment(description) == expected


def test_fold():
    assert fold("  Pagamento   RECEBÍDO ") == "pagamento recebido"


def test_fingerprint_ignores_row_order():
    lines = read_statement_csv(REFUND_CSV)
    assert statement_fingerprint(lines) == statement_fingerprint(list(reversed(lines)))
    assert statement_fingerprint(lines) != statement_fingerprint(lines[:2])


def test_random_signed_amounts_sum_algebraically():
    rng = random.Random(11)
    rows = []
    expected = Decimal("0.00")
    for i in range(200):
        cents = rng.randint(-500000, 500000)
        amount = Decimal(cents) / 100
        rows.append(f"2025-10-{(i % 28) + 1:02d},Loja {i},{amount:.2f}")
        expected += amount
    rows.append(f"2025-11-04,Pagamento recebido,{-abs(expected):.2f}")
    raw = "date,title,amount\n" + "\n".join(rows) + "\n"

    lines = read_statement_csv(raw)

    for line, row in zip(lines, rows):
        assert line.amount == Decimal(row.rsplit(",", 1)[1])
    assert net_total(lines) == expected
