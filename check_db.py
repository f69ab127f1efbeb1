#!/usr/bin/env python3
"""
Check the database connection and the CRM tables
"""

import sys

from config import SUPABASE_KEY, SUPABASE_URL
from db import count_rows, create_supabase_client

TABLES = [
    'super_admins',
    'tenants',
    'company_admins',
    'employees',
    'teams',
    'column_configurations',
    'customer_cases',
    'case_call_logs',
    'case_assignment_history',
    'audit_logs',
]


def check_tables(supabase):
    """Print the row count of every table; returns the tables that could not be read."""
    failed = []
    for table in TABLES:
        try:
            supabase.table(table).select('*').limit(1).execute()
            print(f"✅ {table}: {count_rows(supabase, table)} rows")
        except Exception as e:
            print(f"❌ {table}: {e}")
            failed.append(table)
    return failed


def main():
    print(f"SUPABASE_URL: {SUPABASE_URL}")
    print(f"SUPABASE_KEY: {SUPABASE_KEY[:20]}..." if SUPABASE_KEY else "None")

    try:
        supabase = create_supabase_client(SUPABASE_URL, SUPABASE_KEY)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print("\n🔍 Checking database tables...")
    failed = check_tables(supabase)

    if failed:
        print(f"\n⚠️  {len(failed)} table(s) not accessible: {', '.join(failed)}")
        return 1
    print("\n🎉 All tables accessible")
    return 0


if __name__ == "__main__":
    sys.exit(main())
