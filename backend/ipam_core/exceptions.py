from typing import Any, Optional

from fastapi import HTTPException, status


class IPAMError(Exception):
    """Base exception for IPAM Core"""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=self.message
        )


class ResourceNotFoundError(IPAMError):
    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=self.message
        )


class DuplicateResourceError(IPAMError):
    def __init__(self, resource_type: str, identifier: Any):
        super().__init__(f"{resource_type} already exists: {identifier}")

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=self.message
        )


class ValidationError(IPAMError):
    """Malformed request: bad size, address, offset or parent."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, details)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=self.message
        )


class InvalidCIDRError(ValidationError):
    def __init__(self, cidr: str, details: dict = None):
        super().__init__(f"Invalid CIDR format: {cidr}", details)


class NoFreeSpaceError(IPAMError):
    def __init__(self, scope: Any, size: int):
        super().__init__(f"No free space of size {size} in {scope}", {"scope": scope, "size": size})

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            detail=self.message
        )


class ConflictError(IPAMError):
    """A single reservation attempt lost the race for its candidate."""
    def __init__(self, resource_type: str, candidate: Any, reason: str = None):
        message = f"{resource_type} candidate already taken: {candidate}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, {"candidate": candidate})
        self.resource_type = resource_type
        self.candidate = candidate

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=self.message
        )


class AllocationExhaustedError(IPAMError):
    def __init__(self, resource_type: str, name: str, attempts: int):
        super().__init__(
            f"Unable to create {resource_type}: {name}, every candidate was taken",
            {"attempts": attempts}
        )
        self.attempts = attempts

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=self.message
        )


class OffsetOutOfRangeError(IPAMError):
    """Gateway offset lands outside its block.

    `reserved_id` is set when the block was already reserved; the block stays
    allocated without a gateway.
    """
    def __init__(self, offset: int, start: str, size: int, reserved_id: Optional[int] = None):
        super().__init__(
            f"Offset {offset} is outside the block {start} (size {size})",
            {"offset": offset, "start": start, "size": size}
        )
        self.offset = offset
        self.reserved_id = reserved_id

    def to_http_exception(self) -> HTTPException:
        detail = self.message
        if self.reserved_id is not None:
            detail += f"; reserved id {self.reserved_id} was kept without a gateway"
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail
        )


class GatewayUnavailableError(IPAMError):
    """The gateway address is already reserved by someone else.

    The block or pool itself was reserved and is kept without a gateway.
    """
    def __init__(self, gateway: str, reserved_id: int):
        super().__init__(
            f"Gateway {gateway} is already in use",
            {"gateway": gateway, "reserved_id": reserved_id}
        )
        self.gateway = gateway
        self.reserved_id = reserved_id

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{self.message}; reserved id {self.reserved_id} was kept without a gateway"
        )


class InventoryError(IPAMError):
    """Transport or storage failure talking to the inventory.

    `write_applied` is False only when the failed call is known not to have
    written anything. `reserved_id` is set when the failure happened after
    the main entity was reserved.
    """
    def __init__(self, operation: str, error: Any, write_applied: Optional[bool] = None):
        super().__init__(f"Inventory error during {operation}: {error}")
        self.operation = operation
        self.write_applied = write_applied
        self.reserved_id: Optional[int] = None

    def to_http_exception(self) -> HTTPException:
        detail = self.message
        if self.reserved_id is not None:
            detail += f"; reserved id {self.reserved_id} was kept without a gateway"
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail
        )
