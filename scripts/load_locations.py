# scripts/load_locations.py - Load locations and characters into PostgreSQL
import json
import os
import sys
import urllib.parse
from pathlib import Path

import pandas as pd
import psycopg2
from psycopg2.extras import Json

DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
LIST_COLUMNS = ("keywords", "features_flat")

def connect_to_database():
    """Connect to PostgreSQL using DATABASE_URL (Docker) or localhost defaults"""
    database_url = os.getenv('DATABASE_URL')

    if database_url:
        # postgresql+asyncpg://user:pw@host:5432/db -> plain libpq parameters
        database_url = database_url.replace('postgresql+asyncpg://', 'postgresql://')
        result = urllib.parse.urlparse(database_url)
        print(f"🔗 Connecting to: {result.hostname}:{result.port or 5432}")
        return psycopg2.connect(
            host=result.hostname,
            database=result.path[1:],  # Remove leading /
            user=result.username,
            password=result.password,
            port=result.port or 5432
        )

    print("🖥️  Running locally - using localhost")
    return psycopg2.connect(
        host="localhost",
        database="solo_journey",
        user="postgres",
        password="password",
        port="5432"
    )

def read_table(name):
    """Read ``name``.parquet, falling back to ``name``.csv"""
    parquet_path = DATA_DIR / f"{name}.parquet"
    csv_path = DATA_DIR / f"{name}.csv"
    if parquet_path.exists():
        return pd.read_parquet(parquet_path)
    if csv_path.exists():
        return pd.read_csv(csv_path)
    raise FileNotFoundError(f"Neither {parquet_path} nor {csv_path} exists")

def as_tag_list(value):
    """Tags arrive as lists (parquet) or as JSON / comma separated text (CSV)"""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    if isinstance(value, str):
        value = value.strip()
        if value.startswith('['):
            return [str(v) for v in json.loads(value)]
        return [v.strip() for v in value.split(',') if v.strip()]
    return [str(v) for v in list(value)]

def optional(value, cast):
    return cast(value) if value is not None and pd.notna(value) else None

def create_tables():
    """Create tables if they don't exist (same layout as adapters.database)"""
    conn = connect_to_database()
    cur = conn.cursor()

    try:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS locations (
                location_id INTEGER PRIMARY KEY,
                location_name VARCHAR NOT NULL,
                address VARCHAR,
                latitude FLOAT,
                longitude FLOAT,
                category VARCHAR NOT NULL,
                is_solo_friendly BOOLEAN NOT NULL DEFAULT TRUE,
                description TEXT,
                rating_avg FLOAT,
                rating_count INTEGER,
                price_level INTEGER,
                keywords JSON NOT NULL DEFAULT '[]',
                features_flat JSON NOT NULL DEFAULT '[]',
                created_at TIMESTAMPTZ DEFAULT now(),
                updated_at TIMESTAMPTZ
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS characters (
                character_id INTEGER PRIMARY KEY,
                name VARCHAR NOT NULL
            )
        """)

        cur.execute("CREATE INDEX IF NOT EXISTS ix_locations_category ON locations(category)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_position ON locations(latitude, longitude)")

        conn.commit()
        print("✅ Tables created successfully")

    except Exception as e:
        print(f"❌ Error creating tables: {e}")
        conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()

def load_locations():
    """Upsert locations in batches"""
    print("📍 Loading locations...")

    location_df = read_table("locations")
    print(f"   Found {len(location_df):,} locations")

    conn = connect_to_database()
    cur = conn.cursor()

    try:
        batch_size = 1000
        total_batches = len(location_df) // batch_size + 1

        insert_sql = """
            INSERT INTO locations (location_id, location_name, address, latitude, longitude, category,
                                   is_solo_friendly, description, rating_avg, rating_count, price_level,
                                   keywords, features_flat, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
            ON CONFLICT (location_id) DO UPDATE SET
                location_name = EXCLUDED.location_name, address = EXCLUDED.address,
                latitude = EXCLUDED.latitude, longitude = EXCLUDED.longitude,
                category = EXCLUDED.category, is_solo_friendly = EXCLUDED.is_solo_friendly,
                description = EXCLUDED.description, rating_avg = EXCLUDED.rating_avg,
                rating_count = EXCLUDED.rating_count, price_level = EXCLUDED.price_level,
                keywords = EXCLUDED.keywords, features_flat = EXCLUDED.features_flat,
                updated_at = now()
        """

        for i in range(0, len(location_df), batch_size):
            batch = location_df.iloc[i:i+batch_size]

            values = []
            for _, row in batch.iterrows():
                values.append((
                    int(row['location_id']),
                    str(row['location_name']),
                    optional(row.get('address'), str),
                    optional(row.get('latitude'), float),
                    optional(row.get('longitude'), float),
                    str(row['category']),
                    bool(row.get('is_solo_friendly', True)),
                    optional(row.get('description'), str),
                    optional(row.get('rating_avg'), float),
                    optional(row.get('rating_count'), int),
                    optional(row.get('price_level'), int),
                    *(Json(as_tag_list(row.get(col))) for col in LIST_COLUMNS),
                ))

            cur.executemany(insert_sql, values)

            batch_num = i // batch_size + 1
            if batch_num % 100 == 0:
                print(f"   Locations: {batch_num}/{total_batches} batches")

        conn.commit()
        print("✅ Locations loaded successfully")

    except Exception as e:
        print(f"❌ Error loading locations: {e}")
        conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()

def load_characters():
    """Upsert the gacha character catalogue (optional file)"""
    try:
        character_df = read_table("characters")
    except FileNotFoundError:
        print("ℹ️  No characters file, skipping")
        return

    print(f"🎭 Loading {len(character_df):,} characters...")
    conn = connect_to_database()
    cur = conn.cursor()

    try:
        cur.executemany(
            """
            INSERT INTO characters (character_id, name) VALUES (%s, %s)
            ON CONFLICT (character_id) DO UPDATE SET name = EXCLUDED.name
            """,
            [(int(row['character_id']), str(row['name'])) for _, row in character_df.iterrows()]
        )
        conn.commit()
        print("✅ Characters loaded successfully")

    except Exception as e:
        print(f"❌ Error loading characters: {e}")
        conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()

def verify_data():
    """Print counts and coordinate coverage"""
    print("🔍 Verifying data...")

    conn = connect_to_database()
    cur = conn.cursor()

    try:
        cur.execute("SELECT COUNT(*) FROM locations")
        location_count = cur.fetchone()[0]

        cur.execute("SELECT COUNT(*) FROM locations WHERE latitude IS NULL OR longitude IS NULL")
        missing_coordinates = cur.fetchone()[0]

        cur.execute("SELECT category, COUNT(*) FROM locations GROUP BY category ORDER BY 2 DESC")
        per_category = cur.fetchall()

        cur.execute("SELECT COUNT(*) FROM characters")
        character_count = cur.fetchone()[0]

        print("✅ Database verification:")
        print(f"   Locations in DB: {location_count:,}")
        print(f"   Without coordinates: {missing_coordinates:,} (zero-length legs in route previews)")
        for category, count in per_category:
            print(f"     {category}: {count:,}")
        print(f"   Characters in DB: {character_count:,}")

    finally:
        cur.close()
        conn.close()

def main():
    try:
        print("🔄 Starting data loading process...")
        create_tables()
        load_locations()
        load_characters()
        verify_data()
        print("🎉 Data loading completed successfully!")

    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
