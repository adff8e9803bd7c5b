"""Error mapping and input validation rules."""

import pytest
from pydantic import ValidationError

from resilientme.common.errors import (
    AlreadyExists,
    Internal,
    InvalidArgument,
    NotFound,
    ResourceExhausted,
    error_for_status,
)
from resilientme.common.schemas import EntryCreate, PostCreate, ReactionCreate, sanitize_text


@pytest.mark.parametrize(
    "status,expected",
    [(400, InvalidArgument), (422, InvalidArgument), (404, NotFound), (409, AlreadyExists), (429, ResourceExhausted)],
)
def test_downstream_status_keeps_its_meaning(status, expected):
    """A downstream 4xx maps back to the matching error."""

    err = error_for_status(status, "detail")
    assert isinstance(err, expected)
    assert err.message == "detail"


def test_unknown_status_is_internal():
    """Anything unmapped is treated as Internal."""

    assert isinstance(error_for_status(502, "bad gateway"), Internal)
    assert Internal().status_code == 500


def test_sanitize_text():
    """Markup characters are stripped and whitespace trimmed."""

    assert sanitize_text("  <b>hi</b>  ") == "bhi/b"
    assert len(sanitize_text("x" * 5000)) == 2000


def test_blank_note_becomes_none():
    """An empty note is stored as missing."""

    entry = EntryCreate(
        id="6f1c1c52-52a4-4b52-9a43-27d8a6cf1f10",
        category="academic",
        impact=0,
        note="  <>  ",
        timestamp="2024-03-04T01:00:00+09:00",
    )
    assert entry.note is None
    assert entry.local_day == "2024-03-04"


@pytest.mark.parametrize("content", ["", "  a ", "<<ab>>"])
def test_post_content_too_short(content):
    """Post content needs at least three characters."""

    with pytest.raises(ValidationError, match="Content too short"):
        PostCreate(category="job", content=content)


def test_post_rejects_academic():
    """Only the known post categories are accepted."""

    with pytest.raises(ValidationError, match="Invalid type"):
        PostCreate(category="academic", content="long enough")


def test_reaction_set():
    """Reactions are limited to the fixed emoji set."""

    assert ReactionCreate(reaction="💪").reaction.value == "💪"
    with pytest.raises(ValidationError):
        ReactionCreate(reaction="👍")
