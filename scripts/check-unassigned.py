#!/usr/bin/env python3
from __future__ import annotations

import sys
from argparse import ArgumentParser

from sqlalchemy import func, select

from db.models import Release, StoryMap
from db.session import SessionLocal


def main() -> None:
    parser = ArgumentParser(description="Report story maps without exactly one Unassigned release")
    parser.add_argument("--verbose", action="store_true", help="Print healthy story maps too")
    args = parser.parse_args()

    session = SessionLocal()
    try:
        unassigned = (
            select(Release.story_map_id, func.count().label("count"))
            .where(Release.is_unassigned.is_(True))
            .group_by(Release.story_map_id)
            .subquery()
        )
        stmt = (
            select(StoryMap.id, StoryMap.name, func.coalesce(unassigned.c.count, 0))
            .outerjoin(unassigned, unassigned.c.story_map_id == StoryMap.id)
            .order_by(StoryMap.created_at)
        )
        broken = 0
        for story_map_id, name, count in session.execute(stmt).all():
            if count != 1:
                broken += 1
                print(f"[unassigned] BROKEN story_map={story_map_id} name={name!r} unassigned_releases={count}")
            elif args.verbose:
                print(f"[unassigned] ok story_map={story_map_id} name={name!r}")
        print(f"[unassigned] checked, broken={broken}")
    finally:
        session.close()
    if broken:
        sys.exit(1)


if __name__ == "__main__":
    main()
