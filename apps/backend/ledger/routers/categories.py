"""Categories router."""

from fastapi import APIRouter

from ledger.api.categories import handlers
from ledger.schemas import CategoryOut

router = APIRouter(prefix="/categories", tags=["categories"])

router.add_api_route(
    "",
    handlers.list_categories,
    methods=["GET"],
    response_model=list[CategoryOut],
)

router.add_api_route(
    "",
    handlers.create_category,
    methods=["POST"],
    response_model=CategoryOut,
    status_code=201,
)
