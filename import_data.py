# import_data.py
"""
Import property listings from a CSV export into MongoDB.
Rows are coerced leniently: malformed numbers, dates and flags become null
instead of aborting the import.

Usage:
    python import_data.py data/listings.csv
    python import_data.py data/listings.csv --owner owner@example.com
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import pandas as pd
from pymongo.database import Database
from pymongo.errors import BulkWriteError

from config import Config
from db_mongo import connect_mongo, initialize_mongodb
from parsing import coerce_listing

logger = logging.getLogger(__name__)


def read_listings_csv(csv_path: str) -> pd.DataFrame:
    # Keep every cell as text; parsing decides what each field means
    return pd.read_csv(csv_path, dtype=str, keep_default_na=False)


def row_to_listing(row: Dict[str, Any], owner_id=None) -> Dict[str, Any]:
    doc = coerce_listing(row, strict=False)
    doc["createdBy"] = owner_id
    return doc


def import_listings(db: Database, csv_path: str, owner_email: Optional[str] = None,
                    batch_size: int = 1000) -> int:
    """
    Insert every CSV row as a listing.
    Returns the number of documents inserted.
    """
    if not os.path.exists(csv_path):
        raise FileNotFoundError(csv_path)

    owner_id = None
    if owner_email:
        owner = db.users.find_one({"email": owner_email})
        if not owner:
            raise ValueError(f"Unknown owner: {owner_email}")
        owner_id = owner["_id"]

    df = read_listings_csv(csv_path)
    logger.info("Read %d rows from %s", len(df), csv_path)

    records = df.to_dict(orient="records")
    total_inserted = 0
    for i in range(0, len(records), batch_size):
        batch: List[Dict[str, Any]] = [row_to_listing(r, owner_id) for r in records[i:i + batch_size]]
        if not batch:
            continue
        try:
            res = db.properties.insert_many(batch, ordered=False)
            total_inserted += len(res.inserted_ids)
        except BulkWriteError as e:
            inserted = e.details.get("nInserted", 0)
            total_inserted += inserted
            logger.warning("Batch at row %d: %d inserted, %d errors",
                           i, inserted, len(e.details.get("writeErrors", [])))
        logger.info("Progress: %d/%d", min(i + batch_size, len(records)), len(records))

    logger.info("Imported %d listings", total_inserted)
    return total_inserted


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Import property listings from CSV into MongoDB")
    ap.add_argument("csv_path", help="CSV file with one listing per row")
    ap.add_argument("--owner", help="Email of the user to set as createdBy")
    ap.add_argument("--batch-size", type=int, default=1000)
    ap.add_argument("--mongo-uri", default=Config.MONGO_URI)
    ap.add_argument("--db", default=Config.MONGO_DB)
    return ap.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)

    db = connect_mongo(args.mongo_uri, args.db)
    initialize_mongodb(db)
    try:
        count = import_listings(db, args.csv_path, args.owner, args.batch_size)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Import failed: %s", e)
        return 1
    finally:
        db.client.close()

    print(f"CSV import completed: {count} listings")
    return 0


if __name__ == "__main__":
    sys.exit(main())
