from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, List


class ShopifyProductPayload(BaseModel):
    # products/create and products/update send the full product; products/delete only {"id": ...}
    model_config = ConfigDict(extra="allow")

    id: int = Field(..., description="Shopify product ID")
    title: Optional[str] = Field(None, description="Product title")
    body_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    handle: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[Any] = None
    options: Optional[List[Any]] = None
    variants: Optional[List[Any]] = None
    images: Optional[List[Any]] = None
