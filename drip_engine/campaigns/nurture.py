"""Nurture campaign — engaged lead follow-up."""

from datetime import timedelta


def _has_not_converted(step, subject) -> bool:
    return not subject.attributes.get("customer")


CAMPAIGN = {
    "id": "nurture_v1",
    "name": "Lead Nurture",
    "description": "For leads who downloaded a guide: content drip with a gentle conversion push.",
    "using": "parameters",
    "steps": [
        ("prep_tips", {"delay": timedelta(days=2)}),
        ("myth_buster", {"delay": timedelta(days=6)}),
        ("offer", {"delay": timedelta(days=10), "condition": _has_not_converted}),
        ("case_study", {"delay": timedelta(days=17)}),
    ],
    "emails": {
        "prep_tips": {
            "subject": "3 things most people get wrong",
            "html": "<p>Hi {first_name}, a few quick wins.</p>",
        },
        "myth_buster": {
            "subject": "The myth that keeps coming back",
            "html": "<p>And what actually works.</p>",
        },
        "offer": {
            "subject": "A plan built for you",
            "html": "<p>Here is what we can do together.</p>",
        },
        "case_study": {
            "subject": "From stuck to shipped: one customer's story",
            "html": "<p>How one team turned it around.</p>",
        },
    },
}
