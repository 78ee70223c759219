# tools/generate_sample_data.py
from __future__ import annotations

import argparse
import csv
import random
from datetime import date, timedelta
from decimal import Decimal

MERCHANTS = [
    ("Zaffari Ipiranga", (20, 350)),
    ("Bourbon Ipiranga", (40, 800)),
    ("Mercado Silva", (5, 110)),
    ("Uber* Trip", (8, 45)),
    ("Ifd*Parrilla Del Sur", (40, 180)),
    ("Apple.Com/Bill", (10, 35)),
    ("Amazon", (30, 250)),
    ("Comercial de Combustiv", (100, 300)),
    ("Aloha Petshop", (30, 120)),
    ("Espaco de Cinema Sul", (20, 60)),
]

INSTALLMENT_BUYS = [
    ("Hospital Sao Lucas da", 3, Decimal("196.84")),
    ("Mercadolivre*Mercadol", 6, Decimal("55.04")),
    ("Midea Com", 12, Decimal("253.82")),
]

def daterange(start: date, end: date):
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)

def build_statement_rows(closing: date, rng: random.Random, refunds: int = 1) -> list[dict]:
    """
    One month of card activity ending on `closing`, newest first like the
    issuer's export, with the payment line for the full net total.
    """
    start = closing - timedelta(days=30)
    rows = []

    for d in daterange(start, closing - timedelta(days=1)):
        # some days none, weekends a bit busier
        count = 0 if rng.random() < 0.4 else 1
        if d.weekday() >= 5 and rng.random() < 0.35:
            count += 1
        for _ in range(count):
            merchant, (lo, hi) = rng.choice(MERCHANTS)
            amount = Decimal(str(round(rng.uniform(lo, hi), 2))).quantize(Decimal("0.01"))
            rows.append({"date": d.isoformat(), "title": merchant, "amount": amount})

    for name, total, amount in INSTALLMENT_BUYS:
        current = rng.randint(1, total)
        rows.append({"date": closing.isoformat(), "title": f"{name} - Parcela {current}/{total}", "amount": amount})

    purchases = [r for r in rows if r["amount"] > 0]
    for r in rng.sample(purchases, min(refunds, len(purchases))):
        rows.append({"date": r["date"], "title": "Estorno de compra", "amount": -r["amount"]})

    net = sum((r["amount"] for r in rows), Decimal("0.00"))
    rows.append({"date": closing.isoformat(), "title": "Pagamento recebido", "amount": -net})

    rows.sort(key=lambda r: r["date"], reverse=True)
    return rows

def main():
    parser = argparse.ArgumentParser(description="Write a sample card statement CSV (date,title,amount).")
    parser.add_argument("--closing", default="2025-11-04", help="statement closing date, YYYY-MM-DD")
    parser.add_argument("--out", default="data/statement.csv")
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    rng = random.Random(args.seed)
    rows = build_statement_rows(date.fromisoformat(args.closing), rng)

    with open(args.out, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["date", "title", "amount"])
        writer.writeheader()
        writer.writerows({**r, "amount": f"{r['amount']:.2f}"} for r in rows)

    payment = next(r for r in rows if r["title"] == "Pagamento recebido")
    print(f"Wrote {len(rows)} rows to {args.out}")
    print(f"Net total: {-payment['amount']:.2f}")

if __name__ == "__main__":
    main()
