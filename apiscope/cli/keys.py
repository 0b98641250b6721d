# ABOUTME: CLI command for managing API keys and their permission rules
# ABOUTME: Creates, lists, and revokes keys directly against the configured database

import argparse
import json
import sys
from typing import Dict, List, Any

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from apiscope.config import get_settings
from apiscope.models.database import Base, APIKey, PermissionRule
from apiscope.services.authorization import ACTIONS
from apiscope.services.identity import generate_token, hash_token


def parse_rule(raw: str) -> Dict[str, Any]:
    """
    Parse a --rule argument.

    Accepts "action:resource" (e.g. "read:widgets") or a JSON object with
    action, resource, conditions, columns and includes.
    """
    raw = raw.strip()
    if raw.startswith("{"):
        rule = json.loads(raw)
        if not isinstance(rule, dict) or "resource" not in rule:
            raise ValueError("JSON rule needs at least a resource")
        rule.setdefault("action", "read")
    else:
        action, _, resource = raw.partition(":")
        if not resource:
            raise ValueError(f"Rule must look like action:resource, got {raw!r}")
        rule = {"action": action, "resource": resource}

    if rule["action"] not in ACTIONS:
        raise ValueError(f"Unknown action {rule['action']!r}; expected one of {', '.join(ACTIONS)}")

    allowed = {"action", "resource", "conditions", "columns", "includes"}
    return {key: value for key, value in rule.items() if key in allowed}


def create_api_key(owner_name: str, owner_email: str, rules: List[Dict[str, Any]], is_admin: bool = False) -> str:
    """
    Create an API key with permission rules.

    Returns the plaintext key; it is not stored and cannot be shown again.
    """
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    try:
        plaintext_key = generate_token()
        api_key = APIKey(
            key_hash=hash_token(plaintext_key),
            key_prefix=plaintext_key[:8],
            owner_name=owner_name,
            owner_email=owner_email,
            is_admin=is_admin,
            permission_rules=[PermissionRule(**rule) for rule in rules],
        )
        session.add(api_key)
        session.commit()
        print(f"Created API key {api_key.id} for {owner_name}: {plaintext_key}")
        return plaintext_key

    except Exception as e:
        session.rollback()
        print(f"Error creating API key: {e}")
        raise
    finally:
        session.close()
        engine.dispose()


def list_api_keys() -> None:
    """Print every API key with its status and permission rules."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    session = Session()

    try:
        keys = session.query(APIKey).order_by(APIKey.id).all()
        if not keys:
            print("No API keys have been created yet.")
            return

        for api_key in keys:
            status = "active" if api_key.is_active else "revoked"
            admin = " admin" if api_key.is_admin else ""
            print(f"{api_key.id}  {api_key.key_prefix}...  {api_key.owner_name} <{api_key.owner_email}>  {status}{admin}")
            for rule in api_key.permission_rules:
                print(f"    {rule.action}:{rule.resource}"
                      f" conditions={rule.conditions} columns={rule.columns} includes={rule.includes}")

    finally:
        session.close()
        engine.dispose()


def revoke_api_key(key_id: int) -> bool:
    """Deactivate an API key. Returns False when no key has that id."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Session = sessionmaker(bind=engine)
    session = Session()

    try:
        api_key = session.get(APIKey, key_id)
        if api_key is None:
            print(f"No API key with id {key_id}")
            return False
        api_key.is_active = False
        session.commit()
        print(f"Revoked API key {key_id} ({api_key.key_prefix}...)")
        return True

    finally:
        session.close()
        engine.dispose()


def main(argv=None):
    """CLI entry point for key management."""
    parser = argparse.ArgumentParser(description="Manage apiscope API keys")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create an API key")
    create.add_argument("--owner-name", required=True, help="Name of the key owner")
    create.add_argument("--owner-email", required=True, help="Email of the key owner")
    create.add_argument("--admin", action="store_true", help="Grant admin privileges")
    create.add_argument("--rule", action="append", default=[],
                        help='Permission rule: "read:widgets" or a JSON object (repeatable)')

    subparsers.add_parser("list", help="List API keys")

    revoke = subparsers.add_parser("revoke", help="Revoke an API key")
    revoke.add_argument("key_id", type=int, help="Id of the key to revoke")

    args = parser.parse_args(argv)

    if args.command == "list":
        list_api_keys()
        return

    if args.command == "revoke":
        if not revoke_api_key(args.key_id):
            sys.exit(1)
        return

    try:
        rules = [parse_rule(raw) for raw in args.rule]
    except ValueError as e:
        parser.error(str(e))

    create_api_key(args.owner_name, args.owner_email, rules, is_admin=args.admin)


if __name__ == "__main__":
    main()
