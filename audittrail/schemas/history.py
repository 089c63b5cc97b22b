from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime

from audittrail.schemas.audit import FieldChange, RequestMetadata


class ActivityIdentity(BaseModel):
    """Identity shown for a target or performer: live if resolvable, else the snapshot."""
    id: Optional[str] = None
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    type: Optional[str] = None


class NamePair(BaseModel):
    target: Optional[str] = None
    performed_by: Optional[str] = None


# Display details, one variant per action family

class RoleChangeDisplay(BaseModel):
    kind: Literal["role_change"] = "role_change"
    from_role: Any = None
    to_role: Any = None
    description: str


class BlockStatusDisplay(BaseModel):
    kind: Literal["block_status"] = "block_status"
    previous_status: str
    new_status: str
    description: str


class FieldEditDisplay(BaseModel):
    kind: Literal["field_edit"] = "field_edit"
    fields_changed: List[str]
    changes_count: int
    description: str


class AccountDeletionDisplay(BaseModel):
    kind: Literal["account_deletion"] = "account_deletion"
    description: str
    deleted_user: ActivityIdentity


class AccountCreationDisplay(BaseModel):
    kind: Literal["account_creation"] = "account_creation"
    description: str
    created_user: ActivityIdentity


class ContentDeletionDisplay(BaseModel):
    kind: Literal["content_deletion"] = "content_deletion"
    description: str
    snapshot: Dict[str, Any] = Field(default_factory=dict)


ActivityDetails = Annotated[
    Union[
        RoleChangeDisplay,
        BlockStatusDisplay,
        FieldEditDisplay,
        AccountDeletionDisplay,
        AccountCreationDisplay,
        ContentDeletionDisplay,
    ],
    Field(discriminator="kind"),
]


class ActivityView(BaseModel):
    """A reconciled history entry built from either audit store."""
    id: str
    category: str
    action: str
    timestamp: datetime
    status: str = "completed"
    target: ActivityIdentity
    performed_by: ActivityIdentity
    reason: Optional[str] = None
    changes: List[FieldChange] = Field(default_factory=list)
    metadata: RequestMetadata = Field(default_factory=RequestMetadata)
    source: Literal["centralized_audit", "legacy_audit"]
    original_names: NamePair
    current_names: NamePair
    details: Optional[ActivityDetails] = None

    @property
    def description(self) -> Optional[str]:
        return self.details.description if self.details else None


class HistoryFilters(BaseModel):
    """Query filters. ``"all"`` or empty means no filter."""
    search_text: str = ""
    action: str = "all"
    performer_id: str = "all"
    days_window: str = "30"
    skip: int = 0
    limit: Optional[int] = None


class HistoryStats(BaseModel):
    total_activities: int
    action_breakdown: Dict[str, int]
    staff_breakdown: Dict[str, int]
    time_range: str


class StaffMember(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: str


class HistoryResponse(BaseModel):
    """Response schema for the history endpoints."""
    success: bool = True
    activities: List[ActivityView]
    staff_members: List[StaffMember]
    stats: HistoryStats
    message: str
