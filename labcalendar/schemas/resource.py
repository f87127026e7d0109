"""Resource references attached to an event: materials, chemicals, consumables.

An entry is either backed by the inventory catalog or a free-form "custom"
entry with no stock accounting. The API hands these back in several shapes
(bare strings, catalog objects, objects flagged ``isCustom``); the shape is
decided once here, at ingestion, so the rest of the code only ever sees
``CatalogResource`` or ``CustomResource``.
"""
from __future__ import annotations

import math
import time
import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BeforeValidator, Field, field_validator

from labcalendar.schemas.base import LabModel

CUSTOM_SUFFIX = "_CUSTOM"


def new_custom_id(prefix: str = "RES") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}{CUSTOM_SUFFIX}"


class CatalogResource(LabModel):
    kind: Literal["catalog"] = "catalog"
    id: str
    name: str = ""
    quantity: Optional[float] = None
    requested_quantity: Optional[float] = None
    unit: Optional[str] = None
    quantity_prevision: Optional[float] = None
    min_quantity: Optional[float] = None

    @property
    def is_custom(self) -> bool:
        return False

    @property
    def available_stock(self) -> Optional[float]:
        """Forecast stock if the inventory computed one, current stock otherwise."""
        if self.quantity_prevision is not None:
            return self.quantity_prevision
        return self.quantity


class CustomResource(LabModel):
    kind: Literal["custom"] = "custom"
    id: str = Field(default_factory=new_custom_id)
    name: str
    quantity: Optional[float] = None
    requested_quantity: Optional[float] = None
    unit: Optional[str] = None
    is_custom: Literal[True] = True

    @field_validator("id")
    @classmethod
    def _suffix_id(cls, v: str) -> str:
        return v if v.endswith(CUSTOM_SUFFIX) else f"{v}{CUSTOM_SUFFIX}"

    @property
    def available_stock(self) -> float:
        return math.inf


def ingest_resource(raw: Any) -> Any:
    """Tag a raw resource entry as ``catalog`` or ``custom``."""
    if isinstance(raw, (CatalogResource, CustomResource)):
        return raw
    if isinstance(raw, str):
        return {"kind": "custom", "name": raw}
    if not isinstance(raw, dict):
        raise ValueError(f"Unsupported resource entry: {raw!r}")
    if "kind" in raw:
        return raw

    data = dict(raw)
    flagged = bool(data.pop("isCustom", False) or data.pop("is_custom", False))
    ident = str(data.get("id") or "")
    if flagged or ident.endswith(CUSTOM_SUFFIX) or not ident:
        data["kind"] = "custom"
        if not ident:
            data.pop("id", None)
    else:
        data["kind"] = "catalog"
    return data


def _ingest_all(value: Any) -> Any:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("Resource list expected")
    return [ingest_resource(item) for item in value]


ResourceRef = Annotated[Union[CatalogResource, CustomResource], Field(discriminator="kind")]
ResourceList = Annotated[list[ResourceRef], BeforeValidator(_ingest_all)]
