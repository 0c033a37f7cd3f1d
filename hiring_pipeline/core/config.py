"""Application configuration."""

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SLADefault(BaseModel):
    """System-default SLA threshold for a stage name."""

    stage_name: str
    threshold_days: int


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(env_file=".env")

    # Database
    database_url: str

    # Application
    log_level: str = "INFO"
    expose_error_details: bool = False

    # Frontend (for CORS)
    frontend_url: str = "http://localhost:5173"

    # Pipeline stage template (list values are JSON in the environment)
    pipeline_default_stages: list[str] = [
        "Queue",
        "Applied",
        "Screening",
        "Shortlisted",
        "Interview",
        "Selected",
        "Offer",
        "Hired",
        "Rejected",
    ]
    pipeline_mandatory_stages: list[str] = ["Screening", "Shortlisted", "Offer", "Rejected"]
    pipeline_rejected_stage: str = "Rejected"
    pipeline_entry_stage: str = "Applied"
    pipeline_evaluable_stages: list[str] = ["Applied"]

    # SLA
    sla_default_thresholds: list[SLADefault] = [
        SLADefault(stage_name="Applied", threshold_days=3),
        SLADefault(stage_name="Screening", threshold_days=5),
        SLADefault(stage_name="Interview", threshold_days=7),
        SLADefault(stage_name="Technical Round", threshold_days=7),
        SLADefault(stage_name="HR Round", threshold_days=5),
        SLADefault(stage_name="Offer", threshold_days=3),
    ]

    # Alerts query walks every active link for a company
    alerts_rate_limit: str = "30/minute"

    @property
    def frontend_urls(self) -> list[str]:
        """Parse frontend URLs from comma-separated env var."""
        return [url.strip() for url in self.frontend_url.split(",")]

    @field_validator("pipeline_default_stages", "pipeline_mandatory_stages")
    @classmethod
    def validate_stage_names(cls, v: list[str]) -> list[str]:
        """Strip stage names and reject blanks."""
        names = [name.strip() for name in v]
        if any(not name for name in names):
            raise ValueError("Pipeline stage names must not be blank")
        return names

    @model_validator(mode="after")
    def validate_rejected_stage_is_mandatory(self) -> "Settings":
        """The rejection stage must exist on every job, so it has to be mandatory."""
        if self.pipeline_rejected_stage not in self.pipeline_mandatory_stages:
            raise ValueError(
                "PIPELINE_REJECTED_STAGE must be listed in PIPELINE_MANDATORY_STAGES"
            )
        missing = set(self.pipeline_mandatory_stages) - set(self.pipeline_default_stages)
        if missing:
            raise ValueError(
                f"Mandatory stages missing from PIPELINE_DEFAULT_STAGES: {sorted(missing)}"
            )
        return self


settings = Settings()
