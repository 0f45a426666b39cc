"""
Admin API Endpoints

需要 X-Admin-Secret header：
1. 手動輪替回合 ID
2. 記錄外部驗證過的 NFT 持有資格
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import NftGrantCreate, NftGrantResponse, RoundInfoResponse
from api.deps import get_scheduler, require_admin
from core.exceptions import ValidationError
from core.round_manager import RoundManager
from core.round_scheduler import RoundScheduler
from services.eligibility_service import record_nft_grant

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)]
)
logger = logging.getLogger(__name__)


@router.post("/rounds/rotate", response_model=RoundInfoResponse)
def rotate_round(
    db: Session = Depends(get_db),
    scheduler: RoundScheduler = Depends(get_scheduler)
):
    """
    手動輪替回合 ID（與 00:00 排程相同的流程）

    注意：
        回合階段不會改變，只換 ID
    """
    try:
        ctx = scheduler.rotate_round()
        logger.info(f"Round rotated by admin to {ctx.round_id}")
        return RoundInfoResponse(
            round_id=ctx.round_id,
            phase=ctx.phase,
            games_played=RoundManager.get_games_played(db)
        )

    except Exception as e:
        logger.error(f"Failed to rotate round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/nft-grants", response_model=NftGrantResponse)
def create_nft_grant(data: NftGrantCreate, db: Session = Depends(get_db)):
    """記錄 NFT 持有資格（重複記錄返回原本的資料）"""
    try:
        grant = record_nft_grant(
            data.owner,
            data.collection_address,
            db,
            nft_name=data.nft_name,
            nft_symbol=data.nft_symbol
        )
        db.commit()

        return NftGrantResponse(
            owner=grant.owner,
            collection_address=grant.collection_address,
            nft_name=grant.nft_name,
            nft_symbol=grant.nft_symbol
        )

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to record NFT grant: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")
