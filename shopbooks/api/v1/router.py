from fastapi import APIRouter

from shopbooks.api.v1.endpoints import (
    # Companies, parties, items
    companies,
    # Trade documents
    documents,
    # Numbering
    sequences,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Master Data ====================
api_router.include_router(
    companies.router,
    tags=["Master Data"]
)

# ==================== Documents (Sales / Orders / Purchases) ====================
api_router.include_router(
    documents.router,
    prefix="/documents",
    tags=["Documents"]
)

# ==================== Document Numbering ====================
api_router.include_router(
    sequences.router,
    prefix="/sequences",
    tags=["Document Numbering"]
)
