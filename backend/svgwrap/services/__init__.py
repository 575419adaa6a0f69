"""Services layered on the batch core: history persistence and delivery."""

from .batch_history_service import BatchHistoryService
from .delivery_service import DeliveryService

__all__ = ["BatchHistoryService", "DeliveryService"]
