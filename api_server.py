from typing import List, Optional
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel

from giftplan import config
from giftplan.errors import DecodeError, FormatError, NotFoundError
from giftplan.models import ProductRecord, Tier
from giftplan.pricing.engine import compute_tier_breakdown, lookup_from_products, resolve_products
from giftplan.service import (
    CalculationService,
    ExportService,
    GiftSetService,
    ProductLibraryService,
    RecommendationService,
)
from giftplan.storage import BlobStore, FileBlobStore, gift_set_store, product_store


class TierIn(BaseModel):
    targetTierPrice: float = 0
    discountRate: float = 0
    quantity: float = 0
    boxCost: float = 0
    laborCost: float = 0
    logisticsCost: float = 0
    taxRate: float = 0
    selectedProductIds: List[str] = []


class ProductIn(BaseModel):
    id: str
    name: str = ""
    sku: str = ""
    platformPrice: float = 0
    retailPrice: float = 0


class BreakdownRequest(BaseModel):
    tier: TierIn
    products: List[ProductIn]


class RecommendRequest(BaseModel):
    requirement: str = ""


def create_app(
    blob_store: Optional[BlobStore] = None,
    recommendation_service: Optional[RecommendationService] = None
) -> FastAPI:
    app = FastAPI(title="礼赠方案核算服务")
    blob_store = blob_store or FileBlobStore(config.DATA_DIR)
    library = ProductLibraryService(product_store(blob_store))
    sets = GiftSetService(gift_set_store(blob_store))
    recommender = recommendation_service or RecommendationService()

    def _get_set(set_id: str):
        try:
            return sets.get_set(set_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/tiers/breakdown")
    def tier_breakdown(req: BreakdownRequest):
        # 直接按请求中的参数核算，不读写存储
        tier = Tier.from_dict(req.tier.model_dump())
        products = [ProductRecord.from_dict(p.model_dump()) for p in req.products]
        resolved = resolve_products(tier.selected_product_ids, lookup_from_products(products))
        return compute_tier_breakdown(tier, resolved).to_dict()

    @app.get("/products")
    def list_products(search: str = "", category: str = config.ALL_CATEGORIES, sort: str = "default"):
        return [p.to_dict() for p in library.search(search, category, sort)]

    @app.post("/products/import")
    async def import_products(request: Request, filename: str = "upload.csv"):
        content = await request.body()
        try:
            count = library.import_file(content, filename)
        except (FormatError, DecodeError) as e:
            raise HTTPException(status_code=400, detail=f"导入失败: {e}")
        return {"code": 0, "imported": count}

    @app.get("/gift-sets")
    def list_gift_sets():
        return [s.to_dict() for s in sets.gift_sets]

    @app.get("/gift-sets/{set_id}/breakdowns")
    def gift_set_breakdowns(set_id: str):
        gift_set = _get_set(set_id)
        calc_service = CalculationService()
        results = calc_service.calculate_set(gift_set, library.lookup())
        return {
            "code": 0,
            "data": {
                "tiers": [
                    {"tierId": tier.id, "label": tier.label, **breakdown.to_dict()}
                    for tier, breakdown in results
                ],
                "report": calc_service.get_quick_report(results),
            },
        }

    @app.get("/gift-sets/{set_id}/export")
    def export_gift_set(set_id: str):
        gift_set = _get_set(set_id)
        data, file_name = ExportService().get_csv_bytes(gift_set, library.lookup())
        return Response(
            content=data,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"},
        )

    @app.post("/gift-sets/{set_id}/tiers/{tier_id}/recommendations")
    async def recommend_products(set_id: str, tier_id: str, req: RecommendRequest):
        try:
            tier = sets.get_tier(set_id, tier_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        outcome = await recommender.recommend_async(library.products, tier, req.requirement)
        return {
            "code": 0 if outcome.ok else 1,
            "error": outcome.error,
            "recommendations": [r.model_dump() for r in outcome.recommendations],
        }

    return app


app = create_app()

if __name__ == "__main__":
    config.setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
