from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AdminAuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class SyncWindowOptions(BaseModel):
    date_from: date | None = Field(default=None, alias="from")
    date_to: date | None = Field(default=None, alias="to")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def validate_range(self) -> "SyncWindowOptions":
        if self.date_from is not None and self.date_to is not None and self.date_from > self.date_to:
            raise ValueError("from must be on or before to")
        return self


class ManualSyncRequest(BaseModel):
    fiscal_year_id: int = Field(alias="fiscalYearId", ge=1)

    model_config = ConfigDict(populate_by_name=True)


class HaloImportRequest(BaseModel):
    fiscal_year_id: int = Field(alias="fiscalYearId", ge=1)
    agent_map: dict[str, str | int] = Field(default_factory=dict, alias="agentMap")
    options: SyncWindowOptions | None = None

    model_config = ConfigDict(populate_by_name=True)


class AgentMappingUpsertRequest(BaseModel):
    employee_id: int = Field(ge=1)
    agent_id: str = Field(min_length=1, max_length=64)

    @field_validator("agent_id", mode="before")
    @classmethod
    def coerce_agent_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value


class AgentMappingRead(BaseModel):
    employee_id: int
    agent_id: str

    model_config = ConfigDict(from_attributes=True)


class AgentMappingListResponse(BaseModel):
    ok: bool = True
    mappings: list[AgentMappingRead]


class ClassificationNameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class ClassificationListResponse(BaseModel):
    kind: str
    names: list[str]
    defaults_active: bool
    effective: list[str]


class FiscalYearCreate(BaseModel):
    label: str = Field(pattern=r"^\d{4}/\d{4}$")
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def validate_dates(self) -> "FiscalYearCreate":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date is not None and self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class FiscalYearRead(BaseModel):
    id: int
    label: str
    start_date: date
    end_date: date
    created_at: datetime | None = None
