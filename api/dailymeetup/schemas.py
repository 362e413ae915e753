from pydantic import BaseModel, Field


class SubmitPhotoRequest(BaseModel):
    photo_url: str = Field(min_length=1, max_length=2048)


class AutoPairResponse(BaseModel):
    success: bool
    partner_id: str
    pairing_id: str
    created_placeholder: bool
