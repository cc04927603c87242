"""Data models for favorites, session material and run results."""
import base64
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FavoriteRecord(BaseModel):
    """A favorited item as mirrored locally."""

    external_id: str = Field(..., description="Upstream item id (identity key)")
    title: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = Field(default=None, description="Filled by enrichment")
    gender: Optional[str] = Field(default=None, description="Filled by enrichment")
    price: Optional[float] = None
    image_url: Optional[str] = None
    product_url: Optional[str] = None
    sold: bool = False
    seller_name: Optional[str] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    listed_at: Optional[datetime] = None
    sort_order: int = Field(default=0, description="Position in the upstream listing")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def needs_enrichment(self) -> bool:
        return self.category is None or self.gender is None


class ItemDetails(BaseModel):
    """Secondary attributes recovered from the item detail endpoint or page."""

    external_id: Optional[str] = None
    category: Optional[str] = None
    gender: Optional[str] = None
    listed_at: Optional[datetime] = None
    source: str = Field(default="json", description="json or html")
    missing: list[str] = Field(default_factory=list, description="Fields no strategy resolved")


class SessionToken(BaseModel):
    """One cookie-jar entry."""

    name: str
    value: str
    domain: Optional[str] = None
    path: str = "/"
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    @property
    def usable(self) -> bool:
        return self.is_active and not self.is_expired()


class Credential(BaseModel):
    """Login credential for the external login agent."""

    id: Optional[int] = None
    email: str
    encoded_secret: str
    user_id: Optional[str] = None
    last_refresh_at: Optional[datetime] = None
    is_active: bool = True

    @staticmethod
    def encode_secret(secret: str) -> str:
        # Encoding only, not encryption
        return base64.b64encode(secret.encode("utf-8")).decode("ascii")

    @property
    def secret(self) -> str:
        return base64.b64decode(self.encoded_secret).decode("utf-8")


class SyncResult(BaseModel):
    """Outcome of one sync invocation."""

    success: bool
    message: str
    new_count: int = 0
    total_count: int = 0
    error: Optional[str] = Field(default=None, description="Error class name on failure")


class BrowserCookie(BaseModel):
    """A cookie as exported by the browser extension (Chrome cookie shape)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str = ""
    domain: Optional[str] = None
    path: Optional[str] = None
    expiration_date: Optional[float] = Field(default=None, alias="expirationDate", description="Unix seconds")


class ExtensionFavorite(BaseModel):
    """A favorite scraped by the browser extension, already flattened."""

    model_config = ConfigDict(populate_by_name=True)

    vinted_id: Optional[str] = Field(default=None, alias="vintedId")
    title: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    size: Optional[str] = None
    condition: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    product_url: Optional[str] = Field(default=None, alias="productUrl")
    seller: Optional[str] = None
    sold: Optional[bool] = None

    @field_validator("vinted_id", mode="before")
    @classmethod
    def _id_as_text(cls, value):
        # Ids arrive as numbers or strings
        return None if value is None else str(value).strip() or None

    def to_record(self) -> FavoriteRecord:
        return FavoriteRecord(
            external_id=str(self.vinted_id),
            title=self.title,
            brand=self.brand,
            category=self.category,
            price=self.price,
            size=self.size,
            condition=self.condition,
            image_url=self.image_url,
            product_url=self.product_url,
            seller_name=self.seller,
            sold=bool(self.sold),
        )


class ExtensionPayload(BaseModel):
    favorites: list[ExtensionFavorite] = Field(default_factory=list)
    cookies: list[BrowserCookie] = Field(default_factory=list)
