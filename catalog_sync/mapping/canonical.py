from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any

DEFAULT_NAME = "Default"


class CanonicalOption(BaseModel):
    name: str = DEFAULT_NAME
    display_name: str = DEFAULT_NAME
    price: Optional[int] = Field(None, description="Minor currency units (199.00 → 19900)")
    stock: Optional[int] = None
    sku: Optional[str] = None
    images_url: Optional[List[str]] = None
    is_default: bool = False
    position: int = 0
    metadata: Optional[Dict[str, Any]] = None

    @property
    def external_id(self) -> Optional[str]:
        ext = (self.metadata or {}).get("external_id")
        return str(ext) if ext not in (None, "") else None


class CanonicalVariant(BaseModel):
    name: str = DEFAULT_NAME
    display_name: str = DEFAULT_NAME
    position: int = 0
    options: List[CanonicalOption] = Field(default_factory=list)


class CanonicalProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    short_name: str = ""
    description: str = ""
    short_description: str = ""
    brand_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    images_url: List[str] = Field(default_factory=lambda: [""])
    keywords: List[str] = Field(default_factory=list)
    dimensions: Optional[Dict[str, Any]] = None
    specs: Optional[Dict[str, Any]] = None
    shipping_cost: int = 0
    variants: List[CanonicalVariant] = Field(default_factory=list)

    # provenance / unresolved references (not written to the product row)
    external_id: Optional[str] = None
    source: Optional[str] = None
    brand_name: Optional[str] = None
    category_hint: Optional[str] = None
    # lifecycle status reported by the source ("active" / "draft"), used by the "mirror" policy
    source_status: Optional[str] = None
    # True when subcategory_id came from a real match / explicit input rather than the fallback
    category_resolved: bool = False

    def first_sku(self) -> Optional[str]:
        for v in self.variants:
            for o in v.options:
                if o.sku:
                    return o.sku
        return None


def default_variant(
    price: Optional[int] = None,
    stock: Optional[int] = None,
    sku: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    images_url: Optional[List[str]] = None,
) -> CanonicalVariant:
    """The synthetic Default/Default pair used for products without variant axes."""
    return CanonicalVariant(
        options=[
            CanonicalOption(
                price=price,
                stock=stock,
                sku=sku or None,
                is_default=True,
                metadata=metadata,
                images_url=images_url,
            )
        ]
    )
