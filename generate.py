#!/usr/bin/env python3
"""
Seed a demo SQLite database with users, tokens and tracked visits.

Usage:
    python generate.py                    # Creates lifecycle.db, 20 users
    python generate.py --users 200        # 200 users
    python generate.py --memory           # Uses in-memory DB (for testing)

Removes previous lifecycle.db if it exists before creating a new one.
The first user is granted the admin role. Bearer tokens are printed so the
API can be exercised with curl.
"""

from __future__ import annotations

import argparse
import random
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from auth.authorizer import Authorizer
from config import LIFECYCLE_CONFIG
from core.constants import ACTIVITY_TABLE, VALID_USER_TYPES
from core.models import Profile
from db.repository import Repository

DEFAULT_USERS = 20

_PAGES = ("home", "insights", "opinions", "rewards", "profile", "settings")
_USER_TYPES = sorted(VALID_USER_TYPES)


def seed(repo: Repository, num_users: int, seed: int = 42) -> dict[str, str]:
    """Populate repo and return {user_id: bearer token}. The first user is admin."""
    assert num_users >= 1, "num_users must be >= 1"
    rng = random.Random(seed)
    auth = Authorizer(repo)
    now = datetime.now(timezone.utc)
    max_seconds = LIFECYCLE_CONFIG.max_session_seconds

    tokens: dict[str, str] = {}
    for i in range(num_users):
        user_id = f"u-{i + 1:04d}"
        email = f"user{i + 1}@example.com"
        joined = now - timedelta(days=rng.randint(1, 365))
        repo.insert_identity(user_id, email, joined)
        repo.insert_profile(
            Profile(user_id, email, f"User {i + 1}", rng.choice(_USER_TYPES)), joined
        )
        tokens[user_id] = auth.issue_token(user_id, now)

        for _ in range(rng.randint(1, 8)):
            start = now - timedelta(minutes=rng.randint(5, 60 * 24 * 14))
            session_id = repo.insert_activity_session(user_id, rng.choice(_PAGES), start)
            # Some visits never close (tab killed before the open returned).
            if rng.random() < 0.85:
                duration = rng.randint(1, min(3600, max_seconds - 1))
                repo.close_activity_session(
                    session_id, start + timedelta(seconds=duration), duration
                )

        for _ in range(rng.randint(0, 3)):
            repo.insert("opinions", {"user_id": user_id, "body": "seeded", "created_at": now})
        repo.insert("notifications", {"user_id": user_id, "title": "Welcome", "created_at": joined})
        repo.insert("user_streaks", {"user_id": user_id, "current_streak": rng.randint(0, 30), "updated_at": now})

    # Cross-user upvotes so per-user erasure has dependents to clear.
    opinion_ids = [r["id"] for r in repo.select_all("opinions")]
    user_ids = list(tokens)
    for opinion_id in opinion_ids:
        for voter in rng.sample(user_ids, k=min(len(user_ids), rng.randint(0, 3))):
            repo.insert("opinion_upvotes", {"opinion_id": opinion_id, "user_id": voter, "created_at": now})

    repo.grant_role(user_ids[0], LIFECYCLE_CONFIG.admin_role.value)
    return tokens


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo lifecycle database")
    parser.add_argument(
        "--users",
        type=int,
        default=DEFAULT_USERS,
        help=f"Number of users to create (default: {DEFAULT_USERS})",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--memory", action="store_true", help="Use in-memory database")
    args = parser.parse_args()

    assert args.users >= 1, "users must be >= 1"

    db_path: str | Path
    if args.memory:
        db_path = ":memory:"
        print("Using in-memory database.")
    else:
        db_path = Path(__file__).parent / "lifecycle.db"
        if db_path.exists():
            db_path.unlink()
            print(f"Removed previous database: {db_path}")
        print(f"Database path: {db_path}")

    t0 = time.time()
    repo = Repository(db_path)
    tokens = seed(repo, args.users, seed=args.seed)
    print(f"\nSeeding took {time.time() - t0:.2f}s")

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    print(f"  Users:             {repo.count('profiles')}")
    print(f"  Activity sessions: {repo.count(ACTIVITY_TABLE)}")
    print(f"  Open sessions:     {repo.count(ACTIVITY_TABLE, {'duration_seconds': None})}")
    print(f"  Opinions:          {repo.count('opinions')}")
    print(f"  Upvotes:           {repo.count('opinion_upvotes')}")

    admin_id = next(iter(tokens))
    print(f"\n  Admin: {admin_id}")
    print(f"    Authorization: Bearer {tokens[admin_id]}")
    for user_id, token in list(tokens.items())[1:4]:
        print(f"  {user_id}: Bearer {token}")

    repo.close()
    print(f"\nDone. Database: {db_path}")


if __name__ == "__main__":
    main()
