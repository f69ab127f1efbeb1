#!/usr/bin/env python3
"""
Reset (or create) a SuperAdmin account password

Usage:
    python reset_superadmin_password.py <username> [password]

When the password is omitted it is read from SUPERADMIN_PASSWORD or prompted for.
"""

import getpass
import os
import sys

from auth import AuthManager
from config import BCRYPT_ROUNDS, SUPABASE_KEY, SUPABASE_URL
from db import create_supabase_client, first_row
from utils import get_ist_timestamp


def reset_superadmin_password(supabase, username, password, bcrypt_rounds=BCRYPT_ROUNDS):
    """Hash ``password`` and store it for ``username``; returns 'updated' or 'created'."""
    auth_manager = AuthManager(supabase, bcrypt_rounds=bcrypt_rounds)
    is_valid, message = auth_manager.validate_password_strength(password)
    if not is_valid:
        raise ValueError(message)

    password_hash = auth_manager.hash_password(password)
    existing = first_row(supabase.table('super_admins').select('id').eq('username', username).limit(1).execute())

    if existing:
        supabase.table('super_admins').update({
            'password_hash': password_hash,
            'updated_at': get_ist_timestamp(),
        }).eq('id', existing['id']).execute()
        return 'updated'

    supabase.table('super_admins').insert({'username': username, 'password_hash': password_hash}).execute()
    return 'created'


def main(argv):
    if len(argv) < 2:
        print(__doc__)
        return 1

    username = argv[1].strip()
    password = argv[2] if len(argv) > 2 else os.environ.get('SUPERADMIN_PASSWORD')
    if not password:
        password = getpass.getpass(f"New password for {username}: ")

    try:
        supabase = create_supabase_client(SUPABASE_URL, SUPABASE_KEY)
        action = reset_superadmin_password(supabase, username, password)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    except Exception as e:
        print(f"❌ Error resetting password: {e}")
        return 1

    print(f"✅ SuperAdmin {username} {action}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
