import os
import sys

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from tuition_module.database import Base, SessionLocal, engine
from tuition_module.services import migrate_legacy_credentials


def migrate():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        migrated = migrate_legacy_credentials(db)
        print(f"Wrapped {migrated} legacy SHA-256 password hashes.")
        print("Affected users keep their passwords; hashes are upgraded on their next login.")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    migrate()
