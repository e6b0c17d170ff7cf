# medqueue/schemas/shared.py
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str
