from typing import List

from pydantic import BaseModel, Field


class BulkActionResult(BaseModel):
    """Outcome of a best-effort bulk operation. Failed items are reported, never dropped."""

    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)

    def record_success(self, count: int = 1) -> None:
        self.success += count

    def record_failure(self, message: str, count: int = 1) -> None:
        self.failed += count
        self.errors.append(message)
