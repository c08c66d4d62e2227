from pydantic import BaseModel


class ControllerResponse(BaseModel):
    content: str
