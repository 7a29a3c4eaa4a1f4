from pydantic import BaseModel


class MuteRequest(BaseModel):
    muted: bool | None = None


class MessageView(BaseModel):
    source: str
    text: str
    received_at: float


class SessionView(BaseModel):
    session_id: str
    state: str
    failure: str | None = None
    muted: bool = False
    job_title: str
    start_label: str
    messages: list[MessageView]


class CommandResult(SessionView):
    accepted: bool
