#!/usr/bin/env python3
"""Check MongoDB connectivity and print a summary of stored users and complaints."""
import sys
import time
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pymongo.errors import PyMongoError

from config import DATABASE_NAME, MONGO_URL
from database import Database
from logger import configure_logging, get_logger

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2

log = get_logger("check_db")


def connect(database: Database) -> bool:
    for attempt in range(1, MAX_ATTEMPTS + 1):
        log.info("Attempt %d/%d...", attempt, MAX_ATTEMPTS)
        start = time.time()
        try:
            database.ping()
            log.info("Connected to MongoDB in %dms", (time.time() - start) * 1000)
            return True
        except PyMongoError as e:
            log.error("Connection attempt %d failed: %s", attempt, str(e).split(".")[0])
            database.close()
            if attempt < MAX_ATTEMPTS:
                log.info("Retrying in %d seconds...", RETRY_DELAY_SECONDS)
                time.sleep(RETRY_DELAY_SECONDS)
    return False


def summarize(database: Database):
    log.info("Total users: %d", database["user"].count_documents({}))
    log.info("Total complaints: %d", database["complaint"].count_documents({}))
    recent = database.get_documents("complaint", {}, limit=5, sort=[("created_at", -1)])
    if not recent:
        log.info("No complaints found")
    for i, c in enumerate(recent, 1):
        log.info("%d. %s [%s | %s | %s] %s", i, c.get("title"), c.get("category"),
                 c.get("priority"), c.get("status"), c.get("location", {}).get("address", ""))


def main() -> int:
    configure_logging()
    log.info("Checking database '%s'", DATABASE_NAME)
    database = Database(MONGO_URL, DATABASE_NAME)
    try:
        if not connect(database):
            log.error("MongoDB unreachable; check MONGO_URL and network access rules")
            return 1
        summarize(database)
        return 0
    finally:
        database.close()


if __name__ == "__main__":
    sys.exit(main())
