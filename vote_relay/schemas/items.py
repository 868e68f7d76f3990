from pydantic import BaseModel, Field


class ItemPropertyOut(BaseModel):
    name: str
    type: str | None = None
    value: str | list[str]


class ItemOut(BaseModel):
    id: str
    title: str = ""
    cover: str = ""
    properties: list[ItemPropertyOut] = Field(default_factory=list)


class ItemsOut(BaseModel):
    items: list[ItemOut]
