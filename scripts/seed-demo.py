#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from storymap import journeys, maps, releases, steps, stories
from storymap.releases import unassigned_release

DEMO_JOURNEYS = {
    "Onboarding": ["Sign up", "Verify email", "First project"],
    "Planning": ["Create map", "Add stories", "Prioritise"],
}


def main() -> None:
    parser = ArgumentParser(description="Create a demo story map for a user")
    parser.add_argument("--user-id", type=UUID, required=True)
    parser.add_argument("--name", default="Demo story map")
    parser.add_argument("--stories-per-step", type=int, default=2)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        story_map = maps.create_story_map(session, user_id=args.user_id, name=args.name)
        print(f"[seed] story_map id={story_map.id} name={story_map.name}")
        mvp = releases.create_release(session, user_id=args.user_id, story_map_id=story_map.id, name="MVP")
        backlog = unassigned_release(session, story_map.id)
        print(f"[seed] release id={mvp.id} name=MVP unassigned={backlog.id}")
        for journey_name, step_names in DEMO_JOURNEYS.items():
            journey = journeys.create_journey(
                session, user_id=args.user_id, story_map_id=story_map.id, name=journey_name
            )
            for step_name in step_names:
                step = steps.create_step(session, user_id=args.user_id, journey_id=journey.id, name=step_name)
                for index in range(args.stories_per_step):
                    release = mvp if index == 0 else backlog
                    story = stories.create_story(
                        session,
                        user_id=args.user_id,
                        step_id=step.id,
                        release_id=release.id,
                        title=f"{step_name} story {index + 1}",
                    )
                    print(f"[seed] story id={story.id} cell=({step.name}, {release.name}) sort={story.sort_order}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
