from pydantic import BaseModel


class SweepResult(BaseModel):
    operation: str
    updated_count: int
