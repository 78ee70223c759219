import random
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from generate_sample_data import build_statement_rows

from cardrecon.importers import AGGREGATE_PAYMENT, read_statement_csv
from cardrecon.matcher import net_total
from cardrecon.utils_dates import resolve_billing_cycle


def test_generated_statement_parses_and_balances():
    rows = build_statement_rows(date(2025, 11, 4), random.Random(3))
    raw = "date,title,amount\n" + "\n".join(f"{r['date']},{r['title']},{r['amount']:.2f}" for r in rows) + "\n"

    lines = read_statement_csv(raw)
    payment = [l for l in lines if l.role == AGGREGATE_PAYMENT]

    assert len(payment) == 1
    assert net_total(lines) == -payment[0].amount
    assert resolve_billing_cycle(lines) == "2025-11"
    assert any(l.installment_total == 12 for l in lines)
