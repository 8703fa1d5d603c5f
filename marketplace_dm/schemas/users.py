from typing import Optional
from .base import CamelModel

class UserOut(CamelModel):
    id: int
    username: str
    full_name: str
    avatar: Optional[str] = None
