import logging

from flask import current_app
from supabase.client import create_client, Client

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


def create_supabase_client(url, key) -> Client:
    """Initialize the Supabase client, failing loudly when credentials are missing."""
    if not url:
        raise ValueError("SUPABASE_URL environment variable is required. Please check your .env file.")
    if not key:
        raise ValueError("SUPABASE_ANON_KEY environment variable is required. Please check your .env file.")

    try:
        client = create_client(url, key)
        logger.info("✅ Supabase client initialized successfully")
        return client
    except Exception as e:
        logger.error(f"❌ Error initializing Supabase client: {e}")
        raise


def get_supabase():
    return current_app.config['SUPABASE']


def fetch_all(query_factory, batch_size=BATCH_SIZE):
    """Fetch every row of a query in batches of ``batch_size``.

    ``query_factory`` must return a fresh filtered query on each call since
    the builder is consumed by ``execute()``.
    """
    rows = []
    offset = 0
    while True:
        result = query_factory().range(offset, offset + batch_size - 1).execute()
        batch = result.data or []
        rows.extend(batch)
        if len(batch) < batch_size:
            break
        offset += batch_size
    return rows


def first_row(result):
    data = result.data or []
    return data[0] if data else None


def safe_get_data(client, table_name, filters=None, select_fields='*', limit=10000):
    """Safely get data from Supabase with error handling"""
    try:
        query = client.table(table_name).select(select_fields)

        if filters:
            for key, value in filters.items():
                if value is not None:
                    query = query.eq(key, value)

        if limit:
            query = query.limit(limit)

        result = query.execute()
        return result.data or []
    except Exception as e:
        logger.error(f"Error fetching data from {table_name}: {e}")
        return []


def count_rows(client, table_name, filters=None):
    """Get accurate count from Supabase table"""
    try:
        rows = fetch_all(lambda: _filtered(client.table(table_name).select('id'), filters))
        return len(rows)
    except Exception as e:
        logger.error(f"Error getting count from {table_name}: {e}")
        return 0


def _filtered(query, filters):
    for key, value in (filters or {}).items():
        if value is not None:
            query = query.eq(key, value)
    return query
