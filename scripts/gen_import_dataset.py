#!/usr/bin/env python3
"""Generate synthetic client import CSV files.

The output uses the import template columns and is accepted by
`foodbank import`. Optional knobs inject invalid rows and duplicate pairs so
the validation report and --skip-duplicates paths can be exercised on
realistic volumes.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

FIRST_NAMES = ["John", "Jane", "Bob", "Amira", "Tomasz", "Priya", "Kwame", "Li", "Sofia", "Owen"]
LAST_NAMES = ["Smith", "Doe", "Wilson", "Khan", "Nowak", "Patel", "Mensah", "Chen", "Rossi", "Jones"]
STREETS = ["High Street", "Park Road", "Church Lane", "Station Road", "Ballards Lane", "Regents Park Road"]
POSTCODES = ["N12 0AB", "EN5 1AA", "N3 2PQ", "N2 8HG", "NW11 7DL", "N10 3AA"]
REASONS = ["Referred by GP", "Job loss", "Financial hardship", "Benefit delay", "Housing change", ""]
DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", ""]
TIMES = ["09:00", "09:30", "10:00", "10:30", "11:00", "14:00", "15:30", ""]

COLUMNS = [
    "name",
    "address",
    "family_size",
    "num_children",
    "children_ages",
    "reason",
    "appointment_day",
    "appointment_time",
    "pref_gluten_free",
    "pref_halal",
    "pref_vegetarian",
    "pref_no_cooking",
]


def generate_clients(rows: int, seed: int = 42, invalid_ratio: float = 0.0, duplicate_pairs: int = 0) -> pd.DataFrame:
    """Build a DataFrame of import rows.

    invalid_ratio: share of rows given a rule violation (family_size 0 or a Sunday appointment)
    duplicate_pairs: number of rows copied (name + address) onto a later row
    """
    rng = np.random.default_rng(seed)

    first = rng.choice(FIRST_NAMES, rows)
    last = rng.choice(LAST_NAMES, rows)
    numbers = rng.integers(1, 300, rows)
    streets = rng.choice(STREETS, rows)
    postcodes = rng.choice(POSTCODES, rows)
    family = rng.integers(1, 8, rows)
    children = np.minimum(rng.integers(0, 5, rows), family - 1)

    ages = []
    for n in children:
        ages.append(", ".join(str(a) for a in sorted(rng.integers(1, 17, n))) if n else "")

    df = pd.DataFrame(
        {
            "name": [f"{f} {s} {i + 1}" for i, (f, s) in enumerate(zip(first, last, strict=True))],
            "address": [f"{n} {s}, London {p}" for n, s, p in zip(numbers, streets, postcodes, strict=True)],
            "family_size": family,
            "num_children": children,
            "children_ages": ages,
            "reason": rng.choice(REASONS, rows),
            "appointment_day": rng.choice(DAYS, rows),
            "appointment_time": rng.choice(TIMES, rows),
            "pref_gluten_free": rng.random(rows) < 0.1,
            "pref_halal": rng.random(rows) < 0.15,
            "pref_vegetarian": rng.random(rows) < 0.2,
            "pref_no_cooking": rng.random(rows) < 0.05,
        },
        columns=COLUMNS,
    )

    if invalid_ratio > 0:
        bad = rng.choice(rows, size=int(rows * invalid_ratio), replace=False)
        for k, idx in enumerate(bad):
            if k % 2 == 0:
                df.at[idx, "family_size"] = 0
            else:
                df.at[idx, "appointment_day"] = "Sunday"

    if duplicate_pairs > 0 and rows > 1:
        src = rng.choice(rows - 1, size=min(duplicate_pairs, rows - 1), replace=False)
        for idx in src:
            target = int(rng.integers(idx + 1, rows))
            df.at[target, "name"] = df.at[idx, "name"].upper()
            df.at[target, "address"] = f"  {df.at[idx, 'address']}  "

    for flag in ("pref_gluten_free", "pref_halal", "pref_vegetarian", "pref_no_cooking"):
        df[flag] = df[flag].map({True: "true", False: "false"})
    return df


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic client import CSV files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 1,000 clean rows
  %(prog)s clients.csv --rows 1000

  # maximum-size upload with 2%% invalid rows and 25 duplicate pairs
  %(prog)s big.csv --rows 10000 --invalid-ratio 0.02 --duplicates 25
        """,
    )
    parser.add_argument("output", type=Path, help="Output CSV path")
    parser.add_argument("--rows", type=int, default=1_000, help="Number of data rows (default: 1,000)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--invalid-ratio", type=float, default=0.0, help="Share of rows with a rule violation")
    parser.add_argument("--duplicates", type=int, default=0, help="Number of duplicate (name, address) pairs")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0 <= args.invalid_ratio <= 1:
        print("Error: --invalid-ratio must be between 0 and 1", file=sys.stderr)
        return 1
    if args.rows > 10_000:
        print("Warning: more than 10,000 rows will be rejected by the importer", file=sys.stderr)

    df = generate_clients(args.rows, args.seed, args.invalid_ratio, args.duplicates)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(args.output, index=False)
    print(f"Created CSV file: {args.output}")
    print(f"  Rows: {len(df):,}")
    print(f"  Invalid rows: ~{int(args.rows * args.invalid_ratio):,}")
    print(f"  Duplicate pairs: {args.duplicates}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
