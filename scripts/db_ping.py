"""Ping MongoDB and print the store's collection counts."""
import argparse
import json
import sys
from typing import Optional, Sequence

from pymongo.errors import PyMongoError

import config
import database


def main(argv: Optional[Sequence[str]] = None) -> int:
    argparse.ArgumentParser(description="Ping MongoDB and print collection counts.").parse_args(argv)
    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2
    try:
        result = database.ping(database.db)
    except PyMongoError as e:
        print(f"Ping to {config.DATABASE_NAME} failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
