"""API request and response models."""

from pydantic import BaseModel, ConfigDict, Field

from harvest.session.models import Event


class EventRequest(BaseModel):
    """An event sent by an editor instance."""
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientId", min_length=1, description="Unique id of the editor instance")
    os: str = Field("", description="Operating system the editor runs on")
    editor: str = Field("", description="Name of the editor, e.g. nvim")
    path: str = Field("", description="Absolute path of the current buffer")

    def to_event(self) -> Event:
        return Event(client_id=self.client_id, os=self.os, editor=self.editor, path=self.path)


class AckResponse(BaseModel):
    reply: str
