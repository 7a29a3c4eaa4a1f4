from pydantic import BaseModel, ConfigDict, Field, field_validator


class Resume(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    skills: list[str] = Field(default_factory=list)
    suggested_location: str = Field(default="", alias="suggestedLocation")

    @field_validator("skills", mode="before")
    @classmethod
    def _drop_empty_skills(cls, value):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        return value

    @field_validator("suggested_location", mode="before")
    @classmethod
    def _location_or_blank(cls, value):
        return "" if value is None else value


class CandidateProfile(BaseModel):
    """
    Candidate document as stored in the profile collection.
    `resume` may be absent; that is not an error.
    """
    resume: Resume | None = None

    @classmethod
    def from_document(cls, data: dict | None) -> "CandidateProfile":
        return cls.model_validate(dict(data or {}))
