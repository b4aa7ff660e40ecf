# wishsync/models.py
from dataclasses import MISSING, asdict, dataclass, field, fields
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .errors import ValidationError

GUEST_PREFIX = "guest-"
PLACEHOLDER_PREFIX = "placeholder-"

LIST_TYPES = ("personal", "group", "event")
VISIBILITIES = ("private", "public", "shared")
PRIORITIES = ("low", "medium", "high")
STATUSES = ("active", "reserved", "purchased")
WISH_SOURCES = ("manual", "amazon", "etsy", "other")


@dataclass
class User:
    """
    Identity of whoever is using the client: a guest, a placeholder standing in
    for a pending login, or a user issued by the identity provider.
    """
    id: str
    name: str = ""
    email: str = ""
    avatar_url: str = ""
    currency: str = "USD"

    @property
    def is_guest(self) -> bool:
        return self.id.startswith(GUEST_PREFIX)

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith(PLACEHOLDER_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


class Entity:
    """
    Shared behaviour of cached entities. Subclasses are dataclasses and declare
    how attribute names map onto remote column names.
    """
    ROW_NAMES: ClassVar[Dict[str, str]] = {}
    REQUIRED: ClassVar[Tuple[str, ...]] = ()
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {}
    SERVER_FIELDS: ClassVar[Tuple[str, ...]] = ("id", "created_at")

    id: str

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            has_default = f.default is not MISSING or f.default_factory is not MISSING
            # Remote rows carry NULL for unset columns; keep the local default
            if value is None and has_default and f.default is not None:
                continue
            kwargs[f.name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def merged(self, patch: Dict[str, Any]):
        data = self.to_dict()
        data.update(patch)
        return type(self).from_dict(data)

    @classmethod
    def normalize(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return dict(data)

    @classmethod
    def validate(cls, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """
        Check field names, required fields and enumerated values.
        Returns the normalized copy of ``data``.
        """
        names = set(cls.field_names())
        unknown = sorted(k for k in data if k not in names)
        if unknown:
            raise ValidationError(f"Unknown {cls.__name__} field(s): {', '.join(unknown)}")

        data = cls.normalize(data)

        for name in cls.REQUIRED:
            if partial and name not in data:
                continue
            value = data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"{cls.__name__} {name} is required")

        for name, allowed in cls.CHOICES.items():
            if name in data and data[name] is not None and data[name] not in allowed:
                raise ValidationError(
                    f"{cls.__name__} {name} must be one of {', '.join(allowed)}; got {data[name]!r}"
                )
        return data

    @classmethod
    def row_from_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return {cls.ROW_NAMES.get(k, k): v for k, v in data.items()}

    @classmethod
    def fields_from_row(cls, row: Dict[str, Any]) -> Dict[str, Any]:
        reverse = {v: k for k, v in cls.ROW_NAMES.items()}
        return {reverse.get(k, k): v for k, v in row.items()}

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        return cls.from_dict(cls.fields_from_row(row))

    def to_row(self, exclude: Tuple[str, ...] = ()) -> Dict[str, Any]:
        data = {k: v for k, v in self.to_dict().items() if k not in exclude}
        return self.row_from_fields(data)


@dataclass
class WishList(Entity):
    id: str
    name: str = ""
    user_id: str = ""
    description: str = ""
    type: str = "personal"
    visibility: str = "private"
    share_token: Optional[str] = None
    collaborators: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    category: str = "general"
    image_url: str = ""
    created_at: str = ""
    last_modified: Optional[str] = None
    modified_by: Optional[str] = None

    ROW_NAMES: ClassVar[Dict[str, str]] = {
        "user_id": "userId",
        "share_token": "shareId",
        "image_url": "imageUrl",
        "created_at": "createdAt",
        "last_modified": "lastModified",
        "modified_by": "modifiedBy",
    }
    REQUIRED: ClassVar[Tuple[str, ...]] = ("name",)
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "type": LIST_TYPES,
        "visibility": VISIBILITIES,
    }

    @property
    def is_shared(self) -> bool:
        return self.visibility != "private"


@dataclass
class Wish(Entity):
    id: str
    title: str = ""
    description: str = ""
    price: str = "0"
    priority: str = "medium"
    status: str = "active"
    is_favorite: bool = False
    list_id: Optional[str] = None
    link: str = ""
    image_url: str = ""
    source: str = "manual"
    tags: List[str] = field(default_factory=list)
    category: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: str = ""
    created_at: str = ""

    ROW_NAMES: ClassVar[Dict[str, str]] = {
        "list_id": "listId",
        "user_id": "userId",
        "is_favorite": "isFavorite",
        "image_url": "imageUrl",
        "created_at": "createdAt",
    }
    REQUIRED: ClassVar[Tuple[str, ...]] = ("title",)
    CHOICES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "priority": PRIORITIES,
        "status": STATUSES,
        "source": WISH_SOURCES,
    }

    @classmethod
    def normalize(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if "price" in data:
            data["price"] = normalize_price(data["price"])
        if "is_favorite" in data:
            data["is_favorite"] = bool(data["is_favorite"])
        return data


def normalize_price(value: Any) -> str:
    """Prices travel as decimal text; accept numbers and '$1,299.00' style input."""
    if value is None or value == "":
        return "0"
    text = str(value).strip().replace("$", "").replace(",", "")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"Price must be a decimal number; got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Price must be a decimal number; got {value!r}")
    if amount < 0:
        raise ValidationError(f"Price cannot be negative; got {value!r}")
    return text


@dataclass
class Product:
    """A discovered product, as returned by the catalog search or the scraper."""
    id: str
    title: str
    description: str = ""
    price: str = ""
    image_url: Optional[str] = None
    url: str = ""
    source: str = "other"
    rating: Optional[float] = None
    reviews: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_wish_fields(self, list_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            price = normalize_price(self.price)
        except ValidationError:
            price = "0"
        metadata = dict(self.metadata)
        if self.rating is not None:
            metadata["rating"] = self.rating
        if self.reviews is not None:
            metadata["reviews"] = self.reviews
        return {
            "title": self.title,
            "description": self.description,
            "price": price,
            "link": self.url,
            "image_url": self.image_url or "",
            "source": self.source if self.source in WISH_SOURCES else "other",
            "metadata": metadata,
            "list_id": list_id,
        }
