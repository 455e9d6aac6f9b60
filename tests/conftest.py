import pytest

from formflow.definition import parse_definition
from formflow.storages.memory import MemoryStore


def make_definition(sections, **extra):
    return parse_definition({"id": extra.pop("id", "form_1"), "title": "Test Form", "sections": sections, **extra})


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def branching_definition():
    """Section 1's answer "Yes" jumps straight to section 3."""
    return make_definition(
        [
            {
                "id": "section1",
                "title": "Start",
                "fields": [
                    {
                        "id": "q1",
                        "label": "Skip ahead?",
                        "type": "radio",
                        "required": True,
                        "options": ["Yes", "No"],
                        "conditionalMapping": {"Yes": ["section3"]},
                    }
                ],
            },
            {
                "id": "section2",
                "title": "Middle",
                "fields": [{"id": "q2", "label": "Why not?", "type": "text"}],
            },
            {
                "id": "section3",
                "title": "End",
                "fields": [{"id": "q3", "label": "Comments", "type": "textarea"}],
            },
        ]
    )


@pytest.fixture
def registration_definition():
    return make_definition(
        [
            {
                "id": "details",
                "title": "Your details",
                "fields": [
                    {"id": "name", "label": "Full Name", "type": "text", "required": True},
                    {
                        "id": "email",
                        "label": "Email",
                        "type": "email",
                        "required": True,
                        "isUnique": True,
                    },
                ],
            },
            {
                "id": "attendance",
                "title": "Attendance",
                "fields": [
                    {
                        "id": "attend",
                        "label": "Will you attend?",
                        "type": "radio",
                        "required": True,
                        "options": ["Yes", "No"],
                        "conditionalMapping": {"No": ["__submit__"]},
                    }
                ],
            },
            {
                "id": "extras",
                "title": "Extras",
                "fields": [{"id": "diet", "label": "Dietary needs", "type": "text"}],
            },
        ]
    )
