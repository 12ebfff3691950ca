import os
import sqlite3

DATABASE_FILE = 'database/smartdrop.db'


def setup_database(db_path: str = DATABASE_FILE) -> None:
    """Create the delivery history table if it does not exist yet."""

    # Make sure the parent directory exists (skip for in-memory / bare file names)
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    # One row per SMS that the provider accepted
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS deliveries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        delivery_id TEXT NOT NULL UNIQUE,
        code TEXT NOT NULL,
        box_id TEXT NOT NULL,
        phone TEXT NOT NULL,
        message TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        message_id TEXT,
        provider TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'sent'
    )
    ''')

    conn.commit()
    conn.close()


if __name__ == "__main__":
    setup_database()
    print("Database setup completed successfully!")
