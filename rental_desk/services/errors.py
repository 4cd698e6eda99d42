from __future__ import annotations


class RentalDeskError(Exception):
    status_code = 400


class OrderValidationError(RentalDeskError):
    pass


class InvalidWindow(OrderValidationError):
    pass


class InvalidRecurrence(OrderValidationError):
    pass


class EmptyCart(OrderValidationError):
    pass


class InvalidStatusTransition(RentalDeskError):
    pass


class PersistenceFailure(RentalDeskError):
    def __init__(self, batch: str, message: str) -> None:
        super().__init__(f"Failed to write {batch}: {message}")
        self.batch = batch


class NotAuthenticated(RentalDeskError):
    status_code = 401


class Forbidden(RentalDeskError):
    status_code = 403
