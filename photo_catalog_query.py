#!/usr/bin/env python

import argparse
import sqlite3
from datetime import datetime
from pathlib import Path


def connect_db(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        raise SystemExit(f"DB not found: {db_path}")
    return sqlite3.connect(db_path)


def _fmt_ms(created_ms) -> str:
    return datetime.fromtimestamp(created_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def list_owners(conn: sqlite3.Connection):
    cur = conn.cursor()
    cur.execute("""
        SELECT o.id, o.login, o.display_name, COUNT(r.id), COALESCE(SUM(r.size_bytes), 0)
        FROM owners o
        LEFT JOIN records r ON r.owner_id = o.id
        GROUP BY o.id
        ORDER BY o.login
    """)
    rows = cur.fetchall()
    if not rows:
        print("No owners registered.")
        return

    print("id   | login                | records | total_bytes  | display_name")
    print("-----+----------------------+---------+--------------+-------------")
    for oid, login, display, count, total in rows:
        print(f"{oid:4d} | {login.ljust(20)} | {count:7d} | {total:12d} | {display}")


def list_owner_records(conn: sqlite3.Connection, login: str, folder=None):
    cur = conn.cursor()
    cur.execute("SELECT id FROM owners WHERE login = ?", (login,))
    row = cur.fetchone()
    if not row:
        print(f"No owner with login={login}")
        return

    query = "SELECT id, folder, name, created_ms, size_bytes FROM records WHERE owner_id = ?"
    params = [row[0]]
    if folder is not None:
        query += " AND folder = ?"
        params.append(folder)
    query += " ORDER BY created_ms DESC"
    cur.execute(query, params)
    records = cur.fetchall()

    if not records:
        print(f"No records for {login}.")
        return

    print(f"Records for {login}:")
    print("id                   | created             | size_bytes | full_name")
    print("---------------------+---------------------+------------+----------")
    for rid, rfolder, name, created_ms, size in records:
        full_name = f"{rfolder}/{name}" if rfolder else name
        print(f"{rid:<20d} | {_fmt_ms(created_ms)} | {size:10d} | {full_name}")


def find_by_name(conn: sqlite3.Connection, name: str):
    """Shows every record sharing a file name, across owners and folders."""
    cur = conn.cursor()
    cur.execute("""
        SELECT r.id, o.login, r.folder, r.created_ms
        FROM records r
        JOIN owners o ON o.id = r.owner_id
        WHERE r.name = ?
        ORDER BY o.login, r.folder
    """, (name,))
    rows = cur.fetchall()
    if not rows:
        print(f"No records named {name}")
        return

    print(f"Records named {name}:")
    for rid, login, folder, created_ms in rows:
        location = f"{login}/{folder}" if folder else login
        print(f"  {rid:<20d} {location.ljust(30)} {_fmt_ms(created_ms)}")


def parse_args():
    p = argparse.ArgumentParser(description="Query helper for photo_catalog SQLite DB.")
    p.add_argument("--db", required=True, help="Path to photo_catalog.db (typically under your storage root)")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--owners", action="store_true", help="List owners with record counts")
    group.add_argument("--owner", help="List records of an owner by login")
    group.add_argument("--name", help="Find records by file name across owners")
    p.add_argument("--folder", default=None, help="With --owner: only this folder ('' for the root)")
    return p.parse_args()


def main():
    args = parse_args()
    db_path = Path(args.db).resolve()
    conn = connect_db(db_path)

    try:
        if args.owners:
            list_owners(conn)
        elif args.owner:
            list_owner_records(conn, args.owner, args.folder)
        elif args.name:
            find_by_name(conn, args.name)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
