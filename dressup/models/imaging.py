"""
Request models for the image endpoints.

Clients in the wild send several spellings for the same fields, so the edit
request accepts aliases.
"""

from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EditRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    prompt: Optional[str] = Field(default=None, validation_alias=AliasChoices("prompt", "instruction", "text"))
    image1: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image1", "base64Image1", "img1", "source", "image"),
    )
    image2: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("image2", "base64Image2", "img2", "target"),
    )
    mime1: Optional[str] = None
    mime2: Optional[str] = None
    model: Optional[str] = None


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    image1: Optional[str] = None  # data URL
    image2: Optional[str] = None  # optional reference, data URL
    temperature: float = 0.7
    seed: Optional[int] = None