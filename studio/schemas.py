"""Request and response models for the HTTP API."""

from typing import List, Optional

from pydantic import BaseModel, Field


class InlineImage(BaseModel):
    """An image sent with the request instead of referenced by product ID."""
    name: str = Field(min_length=1, max_length=255)
    image_base64: str
    mime_type: str


class GenerationCreate(BaseModel):
    prompt: str = Field(max_length=4000)
    product_ids: List[str] = Field(default_factory=list)
    images: List[InlineImage] = Field(default_factory=list)


class GenerationAccepted(BaseModel):
    job_id: str
    cost: int
    total: int


class ProgressOut(BaseModel):
    completed: int
    total: int


class ArtifactOut(BaseModel):
    id: str
    prompt: str
    storage_path: str
    public_url: str


class GenerationStatus(BaseModel):
    job_id: str
    status: str
    progress: Optional[ProgressOut] = None
    cost: Optional[int] = None
    artifacts: List[ArtifactOut] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    refunded: Optional[int] = None


class EditCreate(BaseModel):
    prompt: str = Field(max_length=4000)


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    image_base64: str
    mime_type: str
    is_logo: bool = False


class ProductOut(BaseModel):
    id: str
    name: str
    mime_type: str
    image_path: str
    src: str
    is_logo: bool


class BalanceOut(BaseModel):
    user_id: str
    token_balance: int


class PromptEnhanceIn(BaseModel):
    prompt: str = Field(max_length=4000)


class PromptEnhanceOut(BaseModel):
    prompt: str


class CheckoutCreate(BaseModel):
    package: str


class TokenAdjustment(BaseModel):
    amount: int
