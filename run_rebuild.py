"""Rebuild both match collections against the configured database.

Usage: python run_rebuild.py
"""
import json

from dotenv import load_dotenv

# Load environment variables from .env before the package reads them
load_dotenv()


def main():
    from matchsync.db import Base, engine
    import matchsync.models  # noqa: F401
    from matchsync.rebuild import rebuild_all
    from matchsync.services import get_store

    Base.metadata.create_all(bind=engine)
    print("Running rebuild_all()...")
    result = rebuild_all(get_store())
    print(json.dumps(result.to_dict()))


if __name__ == "__main__":
    main()
