"""
Synthetic Dataset Generator
Writes two purchase-line batches; the second carries a collapsed-timestamp block.

Usage:
    python scripts/generate_dataset.py [output_dir] [rows_per_batch]
"""

import sys
from pathlib import Path

from transaction_insights.config.logging import configure_logging
from transaction_insights.data import DataGenerator

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"


def main():
    output_dir = sys.argv[1] if len(sys.argv) > 1 else str(OUTPUT_DIR)
    rows = int(sys.argv[2]) if len(sys.argv) > 2 else 50000

    configure_logging(log_format="text")

    print(f"📊 Generating 2 batches of {rows:,} rows...")
    generator = DataGenerator(output_dir=output_dir)
    paths = generator.save(generator.generate_all(rows_per_batch=rows))

    for path in paths:
        print(f"   ✅ {path}")


if __name__ == "__main__":
    main()
