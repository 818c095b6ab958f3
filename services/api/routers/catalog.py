# services/api/routers/catalog.py
from __future__ import annotations

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Request

from core.identity import SessionIdentity, get_identity
from models.catalog import CategoryCatalog
from models.memo import RecordMode, RecordType
from settings import get_settings


# ---- DI from main.py ----
def get_catalog(request: Request) -> CategoryCatalog:
    from main import get_catalog as _get_catalog
    return _get_catalog(request)


Catalog = Annotated[CategoryCatalog, Depends(get_catalog)]
Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("")
async def list_categories(
    record_type: RecordType,
    catalog: Catalog,
    identity: Identity,
    record_mode: RecordMode = RecordMode.DEFAULT,
) -> Dict[str, Any]:
    """Ordered categories for a record type and mode."""
    cats = catalog.get_categories(record_type, record_mode)
    return {
        "record_type": record_type.value,
        "record_mode": record_mode.value,
        "categories": [
            {"name": c.name, "hint": c.hint, "templates": list(c.templates)} for c in cats
        ],
        "max_selection": None if record_mode == RecordMode.DEFAULT else get_settings().max_custom_categories,
    }


@router.get("/tags")
async def list_tags(catalog: Catalog, identity: Identity) -> Dict[str, Any]:
    return {"tags": list(catalog.common_tags), "reflection_tag": catalog.reflection_tag}


@router.get("/hints/{category_name}")
async def get_hints(category_name: str, catalog: Catalog, identity: Identity) -> Dict[str, Any]:
    """Detailed hint templates for a category; unknown names give an empty list."""
    return {
        "category_name": category_name,
        "templates": [
            {"name": h.name, "template": h.template}
            for h in catalog.get_hint_templates(category_name)
        ],
    }
