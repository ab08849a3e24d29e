"""Welcome campaign — new subscriber onboarding."""

from datetime import timedelta

CAMPAIGN = {
    "id": "welcome_v1",
    "name": "Welcome",
    "description": "New subscriber onboarding: introduce the product, share the best content, soft upgrade nudge.",
    "using": "parameters",
    "steps": [
        ("welcome", {"delay": timedelta(0)}),
        ("getting_started", {"delay": timedelta(days=2)}),
        ("best_of", {"delay": timedelta(days=5)}),
        ("upgrade_nudge", {"delay": timedelta(days=10)}),
    ],
    "emails": {
        "welcome": {
            "subject": "Welcome aboard, {first_name}",
            "html": "<p>Hi {first_name}, thanks for signing up.</p>",
        },
        "getting_started": {
            "subject": "Three things to try this week",
            "html": "<p>Here is how most people get going.</p>",
        },
        "best_of": {
            "subject": "Our most-read guides",
            "html": "<p>The guides readers come back to.</p>",
        },
        "upgrade_nudge": {
            "subject": "Ready for more?",
            "html": "<p>Everything in the free plan, and then some.</p>",
        },
    },
}
