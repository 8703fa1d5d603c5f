from fastapi import APIRouter, Depends, HTTPException
from ..schemas.users import UserOut
from ..crud import get_user_by_id
from ..auth import get_current_user

router = APIRouter()


@router.get('/{user_id}', response_model=UserOut)
async def get_user(user_id: int, current_user: dict = Depends(get_current_user)):
    """Public profile used to label contacts"""
    user = await get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail='User not found')
    return user
