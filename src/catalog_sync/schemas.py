"""Typed remote payloads, validated once at the API client boundary.

Defaulting policy for product payloads:

- ``slug`` falls back to the slug the detail was requested with.
- ``desc`` is the display title; blank or missing becomes "Untitled Product".
- ``name`` is the product code; missing becomes "".
- Rich-text fields (``overview``, ``applications``, ``keyfeatures``) default to "".
- ``gallery`` accepts plain URLs or ``{"image": url}`` objects.
- Malformed ``specifications`` groups and details are dropped, not rejected.
- ``raw`` keeps the untouched payload so the fingerprint covers every field.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TITLE = "Untitled Product"
CATEGORY_DESCRIPTION_KEYS = ("description", "desc", "overview", "content")


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


class CategoryRef(BaseModel):
    """Category reference embedded in product list and detail payloads."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    slug: str | None = None
    name: str | None = None

    @field_validator("id", "slug", "name", mode="before")
    @classmethod
    def coerce(cls, v: Any) -> str | None:
        return _optional_str(v)


class CategoryPayload(BaseModel):
    """A remote category."""

    id: str | None = None
    name: str
    slug: str | None = None
    description: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CategoryPayload":
        description = ""
        for key in CATEGORY_DESCRIPTION_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                description = value
                break
        return cls(
            id=_optional_str(data.get("id")),
            name=_text(data.get("name")).strip(),
            slug=_optional_str(data.get("slug")),
            description=description,
        )


class ProductListEntry(BaseModel):
    """One row of the remote product list."""

    slug: str = ""
    external_id: str | None = None
    category_slug: str | None = None

    @classmethod
    def from_api(cls, item: Any) -> "ProductListEntry":
        if isinstance(item, str):
            return cls(slug=item.strip())
        if not isinstance(item, dict):
            return cls()

        category_slug = None
        first_categories = item.get("1st_categories")
        if isinstance(first_categories, list) and first_categories:
            first = first_categories[0]
            if isinstance(first, dict):
                category_slug = _optional_str(first.get("slug"))

        return cls(
            slug=_text(item.get("slug")).strip(),
            external_id=_optional_str(item.get("id")),
            category_slug=category_slug,
        )


class SpecificationDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    desc: str = ""

    @field_validator("title", "desc", mode="before")
    @classmethod
    def coerce(cls, v: Any) -> str:
        return _text(v)


class SpecificationGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    details: list[SpecificationDetail] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def coerce_title(cls, v: Any) -> str:
        return _text(v)

    @field_validator("details", mode="before")
    @classmethod
    def keep_mappings(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [d for d in v if isinstance(d, dict)]


class ProductPayload(BaseModel):
    """Full remote product detail."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    slug: str
    name: str = ""
    desc: str = DEFAULT_TITLE
    overview: str = ""
    applications: str = ""
    keyfeatures: str = ""
    specifications: list[SpecificationGroup] = Field(default_factory=list)
    image: str | None = None
    gallery: list[str] = Field(default_factory=list)
    category_ids: list[str] = Field(default_factory=list)
    first_categories: list[CategoryRef] = Field(default_factory=list, alias="1st_categories")
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_api(cls, data: Any, requested_slug: str) -> "ProductPayload":
        """Validate a decoded detail body. Raises ValueError when it is not an object."""
        if not isinstance(data, dict):
            raise ValueError("product payload is not an object")
        values = {k: v for k, v in data.items() if k != "raw"}
        if not _text(values.get("slug")).strip():
            values["slug"] = requested_slug
        values["raw"] = data
        return cls.model_validate(values)

    @field_validator("id", "image", mode="before")
    @classmethod
    def optional(cls, v: Any) -> str | None:
        return _optional_str(v)

    @field_validator("slug", "name", "overview", "applications", "keyfeatures", mode="before")
    @classmethod
    def text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("desc", mode="before")
    @classmethod
    def title(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v
        return DEFAULT_TITLE

    @field_validator("specifications", "first_categories", mode="before")
    @classmethod
    def list_of_mappings(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]

    @field_validator("gallery", mode="before")
    @classmethod
    def gallery_urls(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        urls = []
        for item in v:
            if isinstance(item, dict):
                item = item.get("image")
            if isinstance(item, str) and item.strip():
                urls.append(item.strip())
        return urls

    @field_validator("category_ids", mode="before")
    @classmethod
    def category_id_strings(cls, v: Any) -> list[str]:
        if v is None or v == "":
            return []
        if not isinstance(v, list):
            v = [v]
        return [str(item) for item in v if item not in (None, "")]

    @property
    def remote_category_ids(self) -> list[str]:
        """Category ids from both ``category_ids`` and ``1st_categories``, in order, deduplicated."""
        ids = list(self.category_ids)
        ids.extend(ref.id for ref in self.first_categories if ref.id)
        return list(dict.fromkeys(ids))
