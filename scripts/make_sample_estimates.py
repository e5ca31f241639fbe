#!/usr/bin/env python
from __future__ import annotations

import argparse
import random
from pathlib import Path

import pandas as pd

SAMPLE_LOCATIONS = {
    "California": ["San Jose", "Los Angeles", "San Diego", "Fresno"],
    "Texas": ["Austin", "Dallas", "Houston"],
    "Washington": ["Seattle", "Spokane"],
}
SAMPLE_CATEGORIES = ["Caterer", "Bakery", "Florist", "Plumber", "Electrician"]


def build_frame(rows_per_city: int, seed: int) -> pd.DataFrame:
    rng = random.Random(seed)
    records = []
    identifier = 1
    for state, cities in SAMPLE_LOCATIONS.items():
        for city in cities:
            for _ in range(rows_per_city):
                records.append(
                    {
                        "id": identifier,
                        "state": state,
                        "city": city,
                        "category": rng.choice(SAMPLE_CATEGORIES),
                        "reviews": rng.randint(0, 500),
                    }
                )
                identifier += 1
    return pd.DataFrame.from_records(records)


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample estimates reference CSV")
    parser.add_argument("--output", required=True, help="output path (.csv)")
    parser.add_argument("--rows-per-city", type=int, default=25, help="rows generated per city")
    parser.add_argument("--seed", type=int, default=7, help="random seed")
    args = parser.parse_args()

    frame = build_frame(args.rows_per_city, args.seed)
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output, index=False)
    print(f"Sample estimates written: {output} ({len(frame)} rows)")


if __name__ == "__main__":
    main()
