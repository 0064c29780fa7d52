from pydantic import BaseModel
from typing import Optional, Any

class ResponseModel(BaseModel):
    code: int = 0
    message: str = "ok"
    data: Optional[Any] = None
