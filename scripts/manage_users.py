# scripts/manage_users.py
"""
Utility to prepare the application database and mirror users from the
identity service:
- Create the application tables
- List users
- Register a user (password hash comes from the identity service)
- Promote / deactivate a user

Usage:
    python3 scripts/manage_users.py --init-db
    python3 scripts/manage_users.py --list
    python3 scripts/manage_users.py --register alice --password-hash '$2b$...' [--admin]
    python3 scripts/manage_users.py --make-admin --user-id 1
    python3 scripts/manage_users.py --deactivate --user-id 1
"""
import sys
import os
import argparse

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from database.database import get_app_engine, get_session_factory
from database.init_db import init_db
from models.user import User


def list_users():
    db = get_session_factory()()
    try:
        users = db.query(User).order_by(User.id).all()
        print('\n=== Users ===\n')
        for u in users:
            status = "active" if u.is_active else "inactive"
            role = "admin" if u.is_admin else "user"
            print(f'ID: {u.id}  {u.username}  [{role}, {status}]')
    finally:
        db.close()


def register_user(username: str, password_hash: str, is_admin: bool = False) -> bool:
    db = get_session_factory()()
    try:
        if db.query(User).filter(User.username == username).first():
            print(f"Error: user '{username}' already exists")
            return False
        user = User(username=username, password_hash=password_hash, is_admin=is_admin, is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
        print(f"User '{username}' registered with ID {user.id}")
        return True
    except Exception as e:
        db.rollback()
        print(f"Error registering user: {e}")
        return False
    finally:
        db.close()


def update_user(user_id: int, **changes) -> bool:
    db = get_session_factory()()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            print(f"Error: user {user_id} not found")
            return False
        for field, value in changes.items():
            setattr(user, field, value)
        db.commit()
        print(f"User {user_id} updated: {changes}")
        return True
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Manage application users")
    parser.add_argument("--init-db", action="store_true", help="create the application tables")
    parser.add_argument("--list", action="store_true", help="list users")
    parser.add_argument("--register", metavar="USERNAME", help="register a user")
    parser.add_argument("--password-hash", help="hash issued by the identity service")
    parser.add_argument("--admin", action="store_true", help="register as administrator")
    parser.add_argument("--make-admin", action="store_true")
    parser.add_argument("--deactivate", action="store_true")
    parser.add_argument("--user-id", type=int)
    args = parser.parse_args()

    ok = True
    if args.init_db:
        init_db(get_app_engine())
        print("Application tables created")
    if args.list:
        list_users()
    if args.register:
        if not args.password_hash:
            parser.error("--register requires --password-hash")
        ok = register_user(args.register, args.password_hash, args.admin)
    if args.make_admin or args.deactivate:
        if args.user_id is None:
            parser.error("--user-id is required")
        changes = {}
        if args.make_admin:
            changes["is_admin"] = True
        if args.deactivate:
            changes["is_active"] = False
        ok = update_user(args.user_id, **changes)

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
