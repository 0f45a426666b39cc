"""
Leaderboard history service.

Read side of the archived leaderboards: the frontend renders past
rounds from here, and the round-end sequence reads the winner from the
archive rather than from the live board.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from models import LeaderboardHistoryEntry


def get_leaderboard_history(
    db: Session,
    archive_date: Optional[str] = None,
    round_id: Optional[str] = None,
) -> List[LeaderboardHistoryEntry]:
    """
    Return archived rows, optionally filtered by archive date and round,
    ordered by round then rank.
    """
    query = db.query(LeaderboardHistoryEntry)
    if archive_date:
        query = query.filter(LeaderboardHistoryEntry.archive_date == archive_date)
    if round_id:
        query = query.filter(LeaderboardHistoryEntry.round_id == round_id)
    return query.order_by(
        LeaderboardHistoryEntry.archive_date,
        LeaderboardHistoryEntry.round_id,
        LeaderboardHistoryEntry.rank
    ).all()


def history_exists(round_id: str, archive_date: str, db: Session) -> bool:
    return db.query(LeaderboardHistoryEntry).filter(
        LeaderboardHistoryEntry.round_id == round_id,
        LeaderboardHistoryEntry.archive_date == archive_date
    ).first() is not None


def get_winner(round_id: str, archive_date: str, db: Session) -> Optional[str]:
    """Player ranked first in the archive for this round, or None."""
    entry = db.query(LeaderboardHistoryEntry).filter(
        LeaderboardHistoryEntry.round_id == round_id,
        LeaderboardHistoryEntry.archive_date == archive_date,
        LeaderboardHistoryEntry.rank == 1
    ).first()
    return entry.player_id if entry else None
