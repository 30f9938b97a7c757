"""
possumbly.services.vote_service — Vote Transitions & Live Counts
=================================================================

One vote per ``(meme, user)``, guarded by the ``uq_votes_meme_user``
unique constraint:

* no vote yet          → insert
* same type again      → no change (counts still returned)
* opposite type        → overwrite in place
* remove               → delete if present, silently succeed otherwise

Counts are always aggregated from live rows after the mutation; nothing
is cached on the meme.

When two requests for the same pair race on the insert, the loser hits
the unique constraint, rolls back and retries — on the retry the row
exists and the update path runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from possumbly.constants import DOWNVOTE, UPVOTE
from possumbly.database.engine import get_session
from possumbly.database.models import Meme, User, Vote
from possumbly.errors import BadRequestError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

_MAX_INSERT_ATTEMPTS = 2


@dataclass(frozen=True, slots=True)
class VoteCounts:
    upvotes: int
    downvotes: int
    user_vote: int | None = None

    @property
    def score(self) -> int:
        return self.upvotes - self.downvotes

    def to_dict(self) -> dict[str, int | None]:
        return {
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "score": self.score,
            "userVote": self.user_vote,
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def _tally(session: Session, meme_id: str) -> tuple[int, int]:
    up, down = session.execute(
        select(
            func.coalesce(func.sum(case((Vote.vote_type == UPVOTE, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Vote.vote_type == DOWNVOTE, 1), else_=0)), 0),
        ).where(Vote.meme_id == meme_id)
    ).one()
    return int(up), int(down)


def tally_many(session: Session, meme_ids: list[str]) -> dict[str, tuple[int, int]]:
    """``{meme_id: (upvotes, downvotes)}`` for many memes in one query."""
    if not meme_ids:
        return {}
    rows = session.execute(
        select(
            Vote.meme_id,
            func.sum(case((Vote.vote_type == UPVOTE, 1), else_=0)),
            func.sum(case((Vote.vote_type == DOWNVOTE, 1), else_=0)),
        )
        .where(Vote.meme_id.in_(meme_ids))
        .group_by(Vote.meme_id)
    ).all()
    tallies = {meme_id: (0, 0) for meme_id in meme_ids}
    for meme_id, up, down in rows:
        tallies[meme_id] = (int(up or 0), int(down or 0))
    return tallies


def user_votes(session: Session, meme_ids: list[str], user_id: str) -> dict[str, int]:
    """``{meme_id: vote_type}`` for the memes *user_id* has voted on."""
    if not meme_ids:
        return {}
    rows = session.execute(
        select(Vote.meme_id, Vote.vote_type).where(
            Vote.meme_id.in_(meme_ids), Vote.user_id == user_id
        )
    ).all()
    return {meme_id: vote_type for meme_id, vote_type in rows}


def _user_vote(session: Session, meme_id: str, user_id: str) -> Vote | None:
    return session.scalar(
        select(Vote).where(Vote.meme_id == meme_id, Vote.user_id == user_id)
    )


def _require_meme(session: Session, meme_id: str) -> Meme:
    meme = session.get(Meme, meme_id)
    if meme is None:
        raise NotFoundError("Meme")
    return meme


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def get_counts(engine: Engine, meme_id: str, viewer: User) -> VoteCounts:
    """Counts plus the viewer's own vote.

    Public memes are open to every invited user; private ones only to the
    creator and admins.
    """
    with get_session(engine) as session:
        meme = _require_meme(session, meme_id)
        if not meme.is_public and meme.created_by != viewer.id and not viewer.is_admin:
            raise ForbiddenError("Not authorized to view this meme")
        up, down = _tally(session, meme_id)
        mine = _user_vote(session, meme_id, viewer.id)
        return VoteCounts(up, down, mine.vote_type if mine else None)


def cast_vote(engine: Engine, meme_id: str, user_id: str, vote_type: int) -> VoteCounts:
    """Record *user_id*'s vote on a public meme and return fresh counts."""
    if isinstance(vote_type, bool) or vote_type not in (UPVOTE, DOWNVOTE):
        raise BadRequestError("Vote must be 1 (upvote) or -1 (downvote)")
    vote_type = int(vote_type)

    attempt = 0
    while True:
        attempt += 1
        try:
            with get_session(engine) as session:
                meme = _require_meme(session, meme_id)
                if not meme.is_public:
                    raise ForbiddenError("Can only vote on public memes")

                existing = _user_vote(session, meme_id, user_id)
                if existing is None:
                    session.add(Vote(meme_id=meme_id, user_id=user_id, vote_type=vote_type))
                    session.flush()
                elif existing.vote_type != vote_type:
                    existing.vote_type = vote_type
                    session.flush()

                up, down = _tally(session, meme_id)
                return VoteCounts(up, down, vote_type)
        except IntegrityError:
            if attempt >= _MAX_INSERT_ATTEMPTS:
                raise
            logger.info("Vote insert race on meme %s — retrying as update", meme_id)


def remove_vote(engine: Engine, meme_id: str, user_id: str) -> VoteCounts:
    """Delete *user_id*'s vote if there is one and return fresh counts."""
    with get_session(engine) as session:
        _require_meme(session, meme_id)
        session.execute(
            delete(Vote).where(Vote.meme_id == meme_id, Vote.user_id == user_id)
        )
        up, down = _tally(session, meme_id)
        return VoteCounts(up, down, None)
