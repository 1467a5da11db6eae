"""
Stock adjustment collaborator.

Stock is a downstream projection of the financial documents: adjustments run
after the document is committed and never roll it back. Each line/operation
pair is applied at most once, tracked by a StockAdjustment row:

    claim row (PENDING) -> primary inventory call
        success                        -> APPLIED
        definitely not applied         -> fallback direct write -> FALLBACK_APPLIED | FAILED
        outcome unknown (timeout etc.) -> UNCONFIRMED, fallback never runs

A line already APPLIED / FALLBACK_APPLIED / UNCONFIRMED / PENDING is skipped
on repeat calls; only FAILED lines are attempted again.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Set

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.config import settings
from shopbooks.core.exceptions import DependencyError
from shopbooks.models.item import Item
from shopbooks.models.stock_adjustment import (
    StockAdjustment,
    StockAdjustmentStatus,
    StockChannel,
    StockOperation,
)


logger = logging.getLogger(__name__)


# Sign applied to the line quantity for each operation
OPERATION_SIGN = {
    StockOperation.SALE_DECREMENT.value: -1,
    StockOperation.CONVERSION_DECREMENT.value: -1,
    StockOperation.CANCEL_RESTORE.value: 1,
    StockOperation.PURCHASE_INCREMENT.value: 1,
    StockOperation.PURCHASE_REVERSAL.value: -1,
}

DONE_STATUSES = (
    StockAdjustmentStatus.APPLIED.value,
    StockAdjustmentStatus.FALLBACK_APPLIED.value,
)


class InventoryUnavailable(DependencyError):
    """The inventory service definitely did not apply the adjustment."""
    default_code = "INVENTORY_UNAVAILABLE"


class InventoryOutcomeUnknown(DependencyError):
    """The request may or may not have been applied."""
    default_code = "INVENTORY_OUTCOME_UNKNOWN"


@dataclass(frozen=True)
class InventoryResult:
    success: bool
    new_stock: Optional[Decimal] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class StockRequest:
    document_id: uuid.UUID
    document_item_id: uuid.UUID
    item_id: uuid.UUID
    company_id: uuid.UUID
    quantity: Decimal
    operation: str

    @property
    def delta(self) -> Decimal:
        return self.quantity * OPERATION_SIGN[self.operation]


@dataclass(frozen=True)
class StockAdjustmentResult:
    document_item_id: uuid.UUID
    item_id: uuid.UUID
    operation: str
    status: str
    channel: Optional[str] = None
    new_stock: Optional[Decimal] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def applied(self) -> bool:
        return self.status in DONE_STATUSES


# ==================== Inventory services ====================

class LocalInventoryService:
    """Adjusts items.current_stock directly with one atomic UPDATE."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def adjust_stock(
        self,
        item_id: uuid.UUID,
        company_id: uuid.UUID,
        delta: Decimal,
        reason: str,
        reference_id: uuid.UUID,
    ) -> InventoryResult:
        try:
            result = await self.db.execute(
                update(Item)
                .where(Item.id == item_id, Item.company_id == company_id)
                .values(current_stock=Item.current_stock + delta)
                .returning(Item.current_stock)
                .execution_options(synchronize_session=False)
            )
            new_stock = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise InventoryUnavailable(f"Direct stock write failed: {exc}") from exc

        if new_stock is None:
            return InventoryResult(False, message=f"Item {item_id} not found in company {company_id}")
        return InventoryResult(True, Decimal(str(new_stock)))


class HttpInventoryService:
    """Remote inventory service client (POST /api/v1/stock/adjust)."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.INVENTORY_SERVICE_TIMEOUT
        self.transport = transport

    async def adjust_stock(
        self,
        item_id: uuid.UUID,
        company_id: uuid.UUID,
        delta: Decimal,
        reason: str,
        reference_id: uuid.UUID,
    ) -> InventoryResult:
        payload = {
            "itemId": str(item_id),
            "companyId": str(company_id),
            "delta": str(delta),
            "reason": reason,
            "referenceId": str(reference_id),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post("/api/v1/stock/adjust", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise InventoryUnavailable(f"Inventory service unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise InventoryOutcomeUnknown(f"Inventory call interrupted: {exc}") from exc

        if response.status_code >= 500:
            raise InventoryOutcomeUnknown(
                f"Inventory service error {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise InventoryOutcomeUnknown("Inventory service returned a non-JSON body") from exc

        if response.status_code >= 400 or not body.get("success"):
            return InventoryResult(False, message=body.get("message") or f"HTTP {response.status_code}")
        new_stock = body.get("newStock")
        return InventoryResult(True, Decimal(str(new_stock)) if new_stock is not None else None)


def build_inventory_service(db: AsyncSession):
    """Remote service when INVENTORY_SERVICE_URL is set, direct writes otherwise."""
    if settings.INVENTORY_SERVICE_URL:
        return HttpInventoryService(settings.INVENTORY_SERVICE_URL)
    return LocalInventoryService(db)


# ==================== Adjuster ====================

class StockAdjuster:
    """Applies stock side effects idempotently with a direct-write fallback."""

    def __init__(self, db: AsyncSession, inventory=None, fallback=None):
        self.db = db
        self.inventory = inventory or build_inventory_service(db)
        if fallback is None and not isinstance(self.inventory, LocalInventoryService):
            fallback = LocalInventoryService(db)
        self.fallback = fallback

    async def apply(self, requests: Iterable[StockRequest], actor: str) -> List[StockAdjustmentResult]:
        """Apply every request; one result per request, failures included."""
        return [await self._apply_one(request, actor) for request in requests]

    async def applied_lines(self, document_id: uuid.UUID, operations: Iterable[str]) -> Set[uuid.UUID]:
        """Document lines whose stock was actually moved by one of `operations`."""
        result = await self.db.execute(
            select(StockAdjustment.document_item_id).where(
                StockAdjustment.document_id == document_id,
                StockAdjustment.operation.in_(list(operations)),
                StockAdjustment.status.in_(DONE_STATUSES),
            )
        )
        return set(result.scalars())

    async def _claim(self, request: StockRequest, actor: str) -> Optional[StockAdjustment]:
        """
        Claim the (line, operation) slot. Returns None when another attempt
        already owns it (done, in flight or unconfirmed).
        """
        result = await self.db.execute(
            select(StockAdjustment)
            .where(
                StockAdjustment.document_item_id == request.document_item_id,
                StockAdjustment.operation == request.operation,
            )
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()

        if record is not None:
            if record.status != StockAdjustmentStatus.FAILED.value:
                return None
            # Compare-and-set so only one retry reclaims a failed line
            reclaimed = await self.db.execute(
                update(StockAdjustment)
                .where(
                    StockAdjustment.id == record.id,
                    StockAdjustment.status == StockAdjustmentStatus.FAILED.value,
                )
                .values(status=StockAdjustmentStatus.PENDING.value, error=None)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            if reclaimed.rowcount != 1:
                return None
            return await self.db.get(StockAdjustment, record.id, populate_existing=True)

        record = StockAdjustment(
            document_id=request.document_id,
            document_item_id=request.document_item_id,
            item_id=request.item_id,
            company_id=request.company_id,
            operation=request.operation,
            delta=request.delta,
            status=StockAdjustmentStatus.PENDING.value,
            created_by=actor,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return None
        return record

    async def _existing_result(self, request: StockRequest) -> StockAdjustmentResult:
        result = await self.db.execute(
            select(StockAdjustment).where(
                StockAdjustment.document_item_id == request.document_item_id,
                StockAdjustment.operation == request.operation,
            )
        )
        record = result.scalar_one()
        return StockAdjustmentResult(
            document_item_id=request.document_item_id,
            item_id=request.item_id,
            operation=request.operation,
            status=record.status,
            channel=record.channel,
            new_stock=record.new_stock,
            error=record.error,
            skipped=True,
        )

    async def _apply_one(self, request: StockRequest, actor: str) -> StockAdjustmentResult:
        record = await self._claim(request, actor)
        if record is None:
            return await self._existing_result(request)
        record_id = record.id

        reason = f"{request.operation} for document {request.document_id}"
        status = StockAdjustmentStatus.FAILED.value
        channel = StockChannel.PRIMARY.value
        new_stock = None
        error = None

        try:
            outcome = await self.inventory.adjust_stock(
                request.item_id, request.company_id, request.delta, reason, request.document_id
            )
            if outcome.success:
                status, new_stock = StockAdjustmentStatus.APPLIED.value, outcome.new_stock
            else:
                error = outcome.message or "Inventory service rejected the adjustment"
        except InventoryUnavailable as exc:
            error = exc.message
        except InventoryOutcomeUnknown as exc:
            status, error = StockAdjustmentStatus.UNCONFIRMED.value, exc.message
            logger.warning("Stock adjustment %s unconfirmed: %s", record_id, exc.message)

        if status == StockAdjustmentStatus.FAILED.value and self.fallback is not None:
            logger.warning(
                "Primary stock adjustment failed for item %s (%s); applying direct write",
                request.item_id, error,
            )
            channel = StockChannel.FALLBACK.value
            try:
                outcome = await self.fallback.adjust_stock(
                    request.item_id, request.company_id, request.delta, reason, request.document_id
                )
                if outcome.success:
                    status, new_stock = StockAdjustmentStatus.FALLBACK_APPLIED.value, outcome.new_stock
                else:
                    error = outcome.message
            except InventoryUnavailable as exc:
                error = exc.message

        # A failed direct write may have rolled the session back
        record = await self.db.get(StockAdjustment, record_id, populate_existing=True)
        record.status = status
        record.channel = channel
        record.new_stock = new_stock
        record.error = error
        await self.db.commit()

        if status == StockAdjustmentStatus.FAILED.value:
            logger.error("Stock adjustment failed for item %s: %s", request.item_id, error)

        return StockAdjustmentResult(
            document_item_id=request.document_item_id,
            item_id=request.item_id,
            operation=request.operation,
            status=status,
            channel=channel,
            new_stock=new_stock,
            error=error,
        )
