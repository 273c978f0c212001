from pydantic import BaseModel


class UserSummary(BaseModel):
    id: int
    name: str
    email: str | None = None

    model_config = {"from_attributes": True}
