"""
Eligibility service.

A player may open positions in a round when they deposited into that
round, or when an NFT ownership grant was recorded for them. NFT
verification itself happens outside this service; only its outcome is
stored here.
"""
from typing import Optional

from sqlalchemy.orm import Session

from models import EligibilityMethod, NftEligibility
from core.points_ledger import PointsLedger
from services.naming_service import validate_player_id


def get_play_eligibility(player_id: str, round_id: str, db: Session) -> Optional[EligibilityMethod]:
    """
    Return how the player is allowed to play the round, or None.

    A deposit for the round takes precedence over an NFT grant.
    """
    if PointsLedger.has_deposit(db, player_id, round_id):
        return EligibilityMethod.DEPOSIT

    if get_nft_grant(player_id, db):
        return EligibilityMethod.NFT

    return None


def get_nft_grant(player_id: str, db: Session) -> Optional[NftEligibility]:
    return db.query(NftEligibility).filter(NftEligibility.owner == player_id).first()


def record_nft_grant(
    owner: str,
    collection_address: str,
    db: Session,
    nft_name: Optional[str] = None,
    nft_symbol: Optional[str] = None,
) -> NftEligibility:
    """
    Store a verified NFT ownership. Recording the same collection twice
    returns the existing grant.
    """
    owner = validate_player_id(owner)
    collection_address = validate_player_id(collection_address)

    existing = db.query(NftEligibility).filter(
        NftEligibility.owner == owner,
        NftEligibility.collection_address == collection_address
    ).first()
    if existing:
        return existing

    grant = NftEligibility(
        owner=owner,
        collection_address=collection_address,
        nft_name=nft_name,
        nft_symbol=nft_symbol,
    )
    db.add(grant)
    db.flush()
    return grant
