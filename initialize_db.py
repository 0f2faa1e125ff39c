"""
Script to create the database tables and optionally seed teams.

Usage:
    python initialize_db.py
    python initialize_db.py --teams "Arsenal,Chelsea,Liverpool"
"""

import argparse

from db import create_tables, get_db_context
from models import Team


def seed_teams(names):
    """Insert any team names that are not stored yet."""
    with get_db_context() as db:
        existing = {name for (name,) in db.query(Team.name).all()}
        new_teams = [Team(name=name) for name in names if name and name not in existing]
        if new_teams:
            print(f"Adding {len(new_teams)} teams...")
            db.add_all(new_teams)
            db.commit()
    return len(new_teams)


def init_db(team_names=None):
    """Initialize database tables and default data"""
    create_tables()
    if team_names:
        seed_teams(team_names)
    print("Database initialization complete!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create survivor pool tables")
    parser.add_argument("--teams", default="", help="Comma separated team names to seed")
    args = parser.parse_args()
    init_db([name.strip() for name in args.teams.split(",") if name.strip()])
