from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models
from ..catalog_seed import seed_catalog, DEMO_ORG
from ..classifier import classify, list_categories
from ..database import get_db
from ..errors import CalculationError
from ..grids import normalize_grid

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/seed")
def seed(org_id: str = DEMO_ORG, db: Session = Depends(get_db)):
    """Seed the demo catalog (templates, inventory, grids, rules)."""
    counts = seed_catalog(db, org_id)
    return {"ok": True, "org_id": org_id, "seeded": counts}


@router.get("/grids/{grid_id}/price")
def grid_price(grid_id: str, width_cm: float, drop_cm: float, org_id: str = DEMO_ORG,
               db: Session = Depends(get_db)):
    record = (db.query(models.PricingGrid)
              .filter(models.PricingGrid.org_id == org_id, models.PricingGrid.id == grid_id)
              .first())
    if not record:
        raise HTTPException(status_code=404, detail="Grid not found — run /catalog/seed first")
    try:
        grid = normalize_grid(record.id, record.grid_data)
        return grid.cell_for(width_cm, drop_cm)
    except CalculationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())


@router.get("/categories")
def categories():
    """Supported treatment categories and how each is calculated."""
    result = []
    for category in list_categories():
        profile = classify(category)
        result.append({
            "category": profile.category,
            "label": profile.label,
            "family": profile.family.value,
            "grid_priced": profile.grid_priced,
            "requires": profile.requirement.value,
        })
    return result
