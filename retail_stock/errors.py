"""Typed errors raised by the stock core.

Each error carries the HTTP status and machine code the API returns for it,
plus any structured fields worth surfacing to the caller.
"""


class StockError(Exception):
    status_code = 400
    code = "STOCK_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NegativeBalanceError(StockError):
    """A balance update would take on-hand or on-shelf below zero."""

    status_code = 409
    code = "NEGATIVE_BALANCE"

    def __init__(self, batch_id: str, on_hand: int, on_shelf: int, delta_on_hand: int, delta_on_shelf: int):
        super().__init__(
            f"Insufficient stock in batch {batch_id}. "
            f"On hand: {on_hand}, on shelf: {on_shelf}, "
            f"requested change: on hand {delta_on_hand:+d}, on shelf {delta_on_shelf:+d}"
        )
        self.batch_id = batch_id
        self.on_hand = on_hand
        self.on_shelf = on_shelf
        self.delta_on_hand = delta_on_hand
        self.delta_on_shelf = delta_on_shelf

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            batch_id=self.batch_id,
            quantity_on_hand=self.on_hand,
            quantity_on_shelf=self.on_shelf,
        )
        return data


class ShortageError(StockError):
    """Not enough eligible stock across all batches of a product."""

    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(f"Insufficient stock for product {product_id}. Requested: {requested}, Available: {available}")
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def to_report(self) -> dict:
        return {"product_id": self.product_id, "requested": self.requested, "available": self.available}

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(self.to_report())
        return data


class BatchNotFoundError(StockError):
    status_code = 404
    code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        super().__init__(f"Product batch {batch_id} not found")
        self.batch_id = batch_id


class BatchMismatchError(StockError):
    status_code = 400
    code = "BATCH_MISMATCH"

    def __init__(self, batch_id: str, inventory_detail_id: str):
        super().__init__(f"Inventory detail {inventory_detail_id} does not belong to batch {batch_id}")
        self.batch_id = batch_id
        self.inventory_detail_id = inventory_detail_id


class MovementNotFoundError(StockError):
    status_code = 404
    code = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        super().__init__(f"Inventory movement {movement_id} not found")


class AlreadyReversedError(StockError):
    status_code = 409
    code = "ALREADY_REVERSED"


class DocumentNotFoundError(StockError):
    status_code = 404
    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found")


class InvalidTransitionError(StockError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change status from {current} to {target}")
        self.current = current
        self.target = target


class AlreadyCompletedError(InvalidTransitionError):
    """Completing twice would deduct stock twice."""

    status_code = 409
    code = "ALREADY_COMPLETED"

    def __init__(self, document_number: str):
        StockError.__init__(self, f"Document {document_number} is already completed")
        self.current = "completed"
        self.target = "completed"


class EmptyDocumentError(StockError):
    code = "EMPTY_DOCUMENT"

    def __init__(self, document_number: str):
        super().__init__(f"Cannot complete document {document_number} without items")


class FulfillmentRejectedError(StockError):
    """Completion was refused; the document keeps its previous status."""

    status_code = 409
    code = "FULFILLMENT_REJECTED"

    def __init__(self, document_number: str, shortages: list[dict]):
        super().__init__(f"Some items of {document_number} could not be fulfilled. Document status not changed.")
        self.shortages = shortages

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["shortages"] = self.shortages
        return data
