# provide dataclass models

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

Role = Literal["member", "seller", "admin"]
ToastKind = Literal["success", "error", "info"]

DEFAULT_ROLE: Role = "member"


def _pick(row: Mapping[str, Any], cls) -> Dict[str, Any]:
    names = {f.name for f in dataclasses.fields(cls)}
    return {k: v for k, v in row.items() if k in names}


@dataclass(frozen=True)
class Identity:
    """principal reported by the identity provider"""

    id: str
    email: str
    email_verified: bool = False


@dataclass(frozen=True)
class Profile:
    id: str
    role: Role = DEFAULT_ROLE
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        fields = _pick(row, cls)
        fields["role"] = fields.get("role") or DEFAULT_ROLE
        return cls(**fields)


PROFILE_FIELDS = ("role", "full_name", "phone", "address", "avatar_url")


@dataclass(frozen=True)
class Session:
    """
    Identity merged with the optional profile record.
    Profile fields stay None until the profile resolves, which may never happen.
    """

    id: str
    email: str
    email_verified: bool = False
    role: Optional[Role] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "Session":
        return cls(
            id=identity.id,
            email=identity.email,
            email_verified=identity.email_verified,
        )

    @property
    def has_profile(self) -> bool:
        return self.role is not None

    @property
    def effective_role(self) -> Role:
        # a session whose profile never resolved is treated as a member
        return self.role or DEFAULT_ROLE

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]

    def with_identity(self, identity: Identity) -> "Session":
        return dataclasses.replace(
            self, email=identity.email, email_verified=identity.email_verified
        )

    def merge_profile(self, profile: Profile) -> "Session":
        """
        Apply the profile record to the session. The record is authoritative,
        a field cleared in the profile is cleared in the session too.
        """
        if profile.id != self.id:
            return self
        patch = {name: getattr(profile, name) for name in PROFILE_FIELDS}
        patch["role"] = profile.role or DEFAULT_ROLE
        return dataclasses.replace(self, **patch)


@dataclass(frozen=True)
class Product:
    id: str
    seller_id: str
    name: str
    price: int
    description: str = ""
    category: str = ""
    image_url: Optional[str] = None
    status: str = "available"
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        return cls(**_pick(row, cls))

    @property
    def is_sold(self) -> bool:
        return self.status == "sold"


@dataclass(frozen=True)
class CartItem:
    """snapshot of a product at the moment it was added to the cart"""

    id: str
    name: str
    price: int
    image_url: Optional[str] = None
    description: str = ""

    @classmethod
    def from_product(cls, product: Product) -> "CartItem":
        return cls(
            id=product.id,
            name=product.name,
            price=product.price,
            image_url=product.image_url,
            description=product.description,
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CartItem":
        if not isinstance(raw.get("id"), str) or not isinstance(raw.get("name"), str):
            raise ValueError(f"Malformed cart item: {raw!r}")
        price = raw.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise ValueError(f"Malformed cart item price: {price!r}")
        image_url = raw.get("image_url")
        if image_url is not None and not isinstance(image_url, str):
            raise ValueError(f"Malformed cart item image_url: {image_url!r}")
        description = raw.get("description")
        if description is not None and not isinstance(description, str):
            raise ValueError(f"Malformed cart item description: {description!r}")
        return cls(
            id=raw["id"],
            name=raw["name"],
            price=price,
            image_url=image_url,
            description=description or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class Toast:
    id: int
    message: str
    kind: ToastKind = "info"


@dataclass(frozen=True)
class Order:
    id: str
    user_id: str
    total_amount: int
    shipping_address: str
    status: str
    payment_method: str
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        return cls(**_pick(row, cls))


@dataclass(frozen=True)
class OrderItem:
    id: str
    order_id: str
    product_id: str
    quantity: int
    price: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderItem":
        return cls(**_pick(row, cls))


@dataclass(frozen=True)
class Review:
    id: str
    product_id: str
    user_id: str
    rating: int
    comment: str
    image_url: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Review":
        return cls(**_pick(row, cls))


@dataclass(frozen=True)
class ImageFile:
    """image picked from disk for upload, a review photo or an avatar"""

    filename: str
    data: bytes

    @classmethod
    def from_path(cls, path: Path) -> "ImageFile":
        return cls(filename=path.name, data=path.read_bytes())

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot and ext else "bin"

    def storage_path(self, owner_id: str) -> str:
        """object path under the owner's folder, unique per millisecond"""
        return f"{owner_id}/{int(time.time() * 1000)}.{self.extension}"


@dataclass(frozen=True)
class ReviewDraft:
    product_id: str
    user_id: str
    rating: int
    comment: str
    image: Optional[ImageFile] = None


@dataclass(frozen=True)
class SellerRequest:
    id: str
    user_id: str
    shop_name: str
    description: str
    status: str = "pending"
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SellerRequest":
        return cls(**_pick(row, cls))
