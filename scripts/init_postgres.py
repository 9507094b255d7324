"""
Initialize database schema
Creates all tables defined in models
"""
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, init_db


def init_database():
    """Create all tables in the database"""
    print("Creating tables...")

    try:
        init_db()
        print("✓ Tables created successfully!")
        print("\nCreated tables:")
        for name in sorted(Base.metadata.tables):
            print(f"  - {name}")
    except Exception as e:
        print(f"✗ Error creating tables: {e}")
        sys.exit(1)


if __name__ == "__main__":
    init_database()
