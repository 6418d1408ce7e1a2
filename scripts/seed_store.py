import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from portal import create_app, db
from portal.routes import get_store


def main():
    parser = argparse.ArgumentParser(
        description="Create the store table if needed and write the default users and websites."
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Run db.create_all() first (for local SQLite setups without migrations).",
    )
    args = parser.parse_args()

    app = create_app({"SEED_ON_STARTUP": False})
    with app.app_context():
        if args.create_tables:
            db.create_all()
        store = get_store()
        seeded = store.seed_if_empty()
        print("Seeded default data." if seeded else "Store already seeded.")
        print(f"Users: {len(store.get_all_users())}")
        print(f"Websites: {len(store.get_websites())}")


if __name__ == "__main__":
    main()
