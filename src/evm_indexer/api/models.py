from typing import Optional

from pydantic import BaseModel, Field, field_validator

MAX_PAGE_SIZE = 100


class LogsFilter(BaseModel):
    model_config = {
        "extra": "forbid",
    }

    from_block: Optional[int] = Field(default=None, ge=0)
    to_block: Optional[int] = Field(default=None, ge=0)
    block_hash: Optional[str] = None
    address: Optional[str] = None
    topic0: Optional[str] = None
    topic1: Optional[str] = None
    topic2: Optional[str] = None
    topic3: Optional[str] = None
    page: int = 1
    page_size: int = MAX_PAGE_SIZE

    @field_validator('block_hash', 'address', 'topic0', 'topic1', 'topic2', 'topic3')
    @classmethod
    def must_be_hex(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith('0x'):
            raise ValueError("must be a 0x-prefixed hex string")
        return value.lower() if value is not None else None

    @field_validator('page')
    @classmethod
    def clamp_page(cls, value: int) -> int:
        return max(value, 1)

    @field_validator('page_size')
    @classmethod
    def clamp_page_size(cls, value: int) -> int:
        return min(max(value, 1), MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def topics(self) -> tuple[Optional[str], ...]:
        return (self.topic0, self.topic1, self.topic2, self.topic3)


class ErrorResponse(BaseModel):
    status: str
    status_code: int
    message: str
