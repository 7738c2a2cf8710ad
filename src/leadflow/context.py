"""Per-task context threaded through stage executors and adapters."""

from dataclasses import dataclass
from typing import Optional

from .models import BusinessProfile


@dataclass(frozen=True)
class StageContext:
    """Identity and personalization for one task.

    Built once by the dispatcher and passed explicitly to every stage call,
    so concurrent tasks never share business-profile or usage-attribution
    state.

    Attributes:
        user_id: Owner of the task, charged for usage.
        task_id: Task the work runs under (recorded as the usage job id).
        business_profile: Sender profile for briefings and emails, if any.
        max_retries: The task's retry budget per stage call. None uses the
            executors' default.
    """

    user_id: str
    task_id: Optional[str] = None
    business_profile: Optional[BusinessProfile] = None
    max_retries: Optional[int] = None

    @property
    def sender_name(self) -> Optional[str]:
        if self.business_profile is None:
            return None
        return self.business_profile.sender_name or None
