"""Long-running marketplace operation models (plan and quantity changes)."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class OperationStatus(str, Enum):
    """Status of an asynchronous marketplace operation."""

    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def parse(cls, value: object) -> "OperationStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        return cls.UNRECOGNIZED

    @property
    def is_pending(self) -> bool:
        """True while the marketplace is still working on the operation."""
        return self in (OperationStatus.NOT_STARTED, OperationStatus.IN_PROGRESS)


class OperationKind(str, Enum):
    """Kind of change an operation carries; used for logging only."""

    CHANGE_PLAN = "ChangePlan"
    CHANGE_QUANTITY = "ChangeQuantity"

    @property
    def label(self) -> str:
        return "Plan Change" if self is OperationKind.CHANGE_PLAN else "Quantity Change"


class Operation(BaseModel):
    """Transient view of an operation, tracked only while polling."""

    id: str = Field(..., description="Operation id issued by the marketplace")
    status: OperationStatus = Field(default=OperationStatus.IN_PROGRESS)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> OperationStatus:
        return OperationStatus.parse(value)
