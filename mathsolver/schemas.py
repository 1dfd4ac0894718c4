from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(StrEnum):
    OPENAI = "openai"
    GEMINI = "gemini"
    CLAUDE = "claude"


class SolveStatus(StrEnum):
    SOLUTION = "solution"
    ERROR = "error"
    DEGRADED = "degraded"


class Token(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    key: str = Field(repr=False)
    label: str
    daily_limit: int
    used_today: int = 0
    last_used_at: datetime
    usage_count: int = 0
    is_active: bool = True
    position: int = 0

    @property
    def is_available(self) -> bool:
        return self.is_active and self.used_today < self.daily_limit


class Provider(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: ProviderKind
    display_name: str
    is_active: bool = False
    selected_model: str = ""
    available_models: list[str] = Field(default_factory=list)
    api_endpoint: str = ""
    total_usage: int = 0
    tokens: list[Token] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def find_token(self, token_id: str) -> Token | None:
        return next((t for t in self.tokens if t.id == token_id), None)


class TokenSpec(BaseModel):
    """Payload for adding a token. Missing label/limit get defaults at insert time."""

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1)
    label: str | None = None
    daily_limit: int | None = Field(default=None, ge=0)


class TokenPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str | None = Field(default=None, min_length=1)
    label: str | None = None
    daily_limit: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ProviderSeed(BaseModel):
    kind: ProviderKind
    display_name: str
    selected_model: str = ""
    available_models: list[str] = Field(default_factory=list)
    api_endpoint: str = ""
    is_active: bool = False
    tokens: list[TokenSpec] = Field(default_factory=list)


class SolveResult(BaseModel):
    status: SolveStatus
    text: str | None = None
    error: str | None = None
    provider: ProviderKind | None = None
    token_id: str | None = None
    attempts: int = 0


class ProbeResult(BaseModel):
    query: str
    result: SolveResult
    response_time_ms: float
