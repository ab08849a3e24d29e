"""Digest campaign — a short intro followed by a recurring weekly digest."""

from datetime import timedelta

CAMPAIGN = {
    "id": "digest_v1",
    "name": "Weekly Digest",
    "description": "Intro email on signup, then a digest every week until the subscriber leaves.",
    "using": "parameters",
    "steps": [
        ("digest_intro", {"delay": timedelta(0)}),
        ("weekly_digest", {"every": timedelta(weeks=1), "start": timedelta(days=3)}),
    ],
    "emails": {
        "digest_intro": {
            "subject": "Your weekly digest starts soon",
            "html": "<p>Hi {first_name}, expect the first one in a few days.</p>",
        },
        "weekly_digest": {
            "subject": "This week's digest",
            "html": "<p>The week in five links.</p>",
        },
    },
}
