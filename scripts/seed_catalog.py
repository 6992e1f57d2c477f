"""
Load catalog SKU codes into sku_master.

Accepts a plain text file (one SKU per line) or a CSV file with a
``sku_code`` column and optional ``description`` and ``brand`` columns.
Existing codes are updated in place.

Usage:
    python scripts/seed_catalog.py path/to/catalog.csv
"""

import argparse
import asyncio
import logging
import sys
import os
from pathlib import Path
from typing import Dict, List
import pandas as pd

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine, dialect_insert
from core.exceptions import ValidationError
from core.logging import setup_logging
from models.base import utcnow
from models.catalog import SkuMaster

logger = logging.getLogger(__name__)


def read_catalog(path: Path) -> List[Dict[str, str]]:
    """Parse catalog rows; SKU codes are upper-cased and deduplicated (last row wins)."""
    if not path.exists():
        raise ValidationError(f"Catalog file not found: {path}", context={"file_path": str(path)})

    if path.suffix.lower() != ".csv":
        codes = path.read_text(encoding="utf-8-sig").splitlines()
        rows = {
            code: {"sku_code": code, "description": None, "brand": None}
            for code in (line.strip().upper() for line in codes)
            if code and not code.startswith("#")
        }
        return list(rows.values())

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except pd.errors.EmptyDataError as e:
        raise ValidationError(
            "CSV catalog is empty",
            context={"file_path": str(path)},
            original_exception=e
        )

    # Normalize column names (strip whitespace, lowercase)
    df.columns = df.columns.str.strip().str.lower().str.replace(" ", "_")
    if "sku_code" not in df.columns:
        raise ValidationError(
            "CSV catalog needs a sku_code column",
            context={"file_path": str(path), "columns": list(df.columns)}
        )

    for column in ("description", "brand"):
        if column not in df.columns:
            df[column] = ""
    df = df[["sku_code", "description", "brand"]].apply(lambda col: col.str.strip())
    df["sku_code"] = df["sku_code"].str.upper()
    df = df[df["sku_code"] != ""].drop_duplicates(subset="sku_code", keep="last")

    logger.info(f"Read {len(df)} catalog rows from {path}")
    return [
        {"sku_code": row["sku_code"], "description": row["description"] or None, "brand": row["brand"] or None}
        for row in df.to_dict(orient="records")
    ]


async def seed_catalog(rows: List[Dict[str, str]], chunk_size: int = 1000) -> int:
    async with async_session_maker() as session:
        for start in range(0, len(rows), chunk_size):
            chunk = rows[start:start + chunk_size]
            now = utcnow()
            stmt = dialect_insert(session, SkuMaster).values(
                [{**row, "created_at": now, "updated_at": now} for row in chunk]
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["sku_code"],
                set_={
                    "description": stmt.excluded.description,
                    "brand": stmt.excluded.brand,
                    "updated_at": now,
                }
            )
            await session.execute(stmt)
        await session.commit()
    return len(rows)


async def main(path: Path):
    try:
        count = await seed_catalog(read_catalog(path))
        logger.info(f"Seeded {count} catalog SKUs from {path}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the SKU catalog")
    parser.add_argument("path", type=Path, help="Text or CSV file of SKU codes")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(main(args.path))
