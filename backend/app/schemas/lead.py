from pydantic import BaseModel, ConfigDict, Field, field_validator


class UnlockLeadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    exclusive: bool = False

    @field_validator("job_id")
    @classmethod
    def _strip_job_id(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("jobId required")
        return value


class UnlockLeadResponse(BaseModel):
    ok: bool = True
    credits: int
