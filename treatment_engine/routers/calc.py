"""
Calculation endpoints.

POST /api/calc_bom_and_price — catalog-driven BOM + pricing rules
POST /api/calculate          — full price breakdown from supplied contracts
POST /api/bundle             — accessory derivation for one track or rod
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import schemas
from ..bom_assembler import calc_bom_and_price
from ..calculators.bundle import BundleCalculator
from ..catalog import CatalogNotFound, CatalogRepository
from ..database import get_db
from ..errors import CalculationError
from ..grids import GridResolver
from ..pricing_engine import PriceAggregator
from ..validation import StrictContract

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calculation"])


def _unprocessable(e: CalculationError) -> HTTPException:
    logger.info(f"Calculation rejected ({e.code}): {e.message}")
    return HTTPException(status_code=422, detail=e.to_dict())


@router.post("/calc_bom_and_price", response_model=schemas.BomResponse)
def calc_bom(request: schemas.BomRequest, db: Session = Depends(get_db)):
    try:
        snapshot = CatalogRepository(db).load(
            request.org_id, request.template_id, request.state, request.window_type_id,
        )
        return calc_bom_and_price(snapshot, request.state)
    except CatalogNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CalculationError as e:
        raise _unprocessable(e)


@router.post("/calculate", response_model=schemas.CalculationResultContract)
def calculate(request: schemas.CalculateRequest):
    try:
        template = StrictContract.parse(schemas.TemplateContract, request.template, "Template")
        measurements = StrictContract.parse(schemas.MeasurementsContract, request.measurements,
                                            "Measurements")
        fabric = material = hardware = None
        if request.fabric is not None:
            fabric = StrictContract.parse(schemas.FabricContract, request.fabric, "Fabric")
        if request.material is not None:
            material = StrictContract.parse(schemas.MaterialContract, request.material, "Material")
        if request.hardware is not None:
            hardware = StrictContract.parse(schemas.HardwareSelection, request.hardware, "Hardware")
        options = StrictContract.parse_many(schemas.SelectedOptionContract, request.options, "Option")
        grids = StrictContract.parse_many(schemas.PricingGridContract, request.grids, "Pricing grid")

        resolver = GridResolver({g.id: g.grid_data for g in grids}, request.price_group_rules)
        return PriceAggregator(resolver).calculate(
            template, measurements, fabric=fabric, material=material,
            options=options, heading_id=request.heading_id, hardware=hardware,
        )
    except CalculationError as e:
        raise _unprocessable(e)


@router.post("/bundle")
def bundle(request: schemas.BundleRequest):
    try:
        return BundleCalculator().calculate(
            request.kind, request.width_ft, height=request.height,
            is_double=request.is_double, mount_type=request.mount_type,
            metadata=request.metadata, rules=request.rules,
            price_overrides=request.price_overrides,
        )
    except CalculationError as e:
        raise _unprocessable(e)
