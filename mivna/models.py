"""Records mirrored from the hosted database and the GitHub API.

These are plain pydantic models; the hosted platform owns the schema and its
row-level access policies. Unknown columns are ignored so that the backend
can add fields without breaking older clients.
"""

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RepoStatus(str, enum.Enum):
    """Generation status of a connected repository."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class DiagramType(str, enum.Enum):
    """Diagram variants a repository can have."""

    FLOWCHART = "flowchart"
    ERD = "erd"
    SEQUENCE = "sequence"
    COMPONENT = "component"


class MemberRole(str, enum.Enum):
    """Roles for organization members."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class PlanTier(str, enum.Enum):
    """Subscription plan tiers."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserMetadata(_Record):
    avatar_url: Optional[str] = None
    user_name: Optional[str] = None
    full_name: Optional[str] = None


class User(_Record):
    """Authenticated user as returned by the auth endpoints."""

    id: str
    email: Optional[str] = None
    user_metadata: UserMetadata = Field(default_factory=UserMetadata)

    @property
    def display_name(self) -> str:
        return self.user_metadata.user_name or self.email or "User"


class Profile(_Record):
    """Row of the ``profiles`` table: usage counters and subscription."""

    id: str
    github_username: Optional[str] = None
    avatar_url: Optional[str] = None
    diagrams_generated: int = 0
    readmes_generated: int = 0
    created_at: Optional[datetime] = None
    subscription_tier: PlanTier = PlanTier.FREE
    subscription_status: Optional[str] = None
    subscription_current_period_end: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    last_diagram_at: Optional[datetime] = None
    diagrams_this_hour: int = 0
    last_readme_at: Optional[datetime] = None
    readmes_this_hour: int = 0

    @field_validator(
        "diagrams_generated", "readmes_generated", "diagrams_this_hour", "readmes_this_hour",
        mode="before",
    )
    @classmethod
    def _null_counter_is_zero(cls, value):
        return 0 if value is None else value

    @field_validator("subscription_tier", mode="before")
    @classmethod
    def _null_tier_is_free(cls, value):
        return PlanTier.FREE if value in (None, "") else value


class RepositoryDiagram(_Record):
    """Row of ``repository_diagrams``: one diagram variant of a repository."""

    id: str
    repository_id: str
    diagram_type: DiagramType
    diagram_code: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Repository(_Record):
    """Row of ``repositories``: a connected GitHub repository."""

    id: str
    user_id: str
    github_repo_id: int
    repo_name: str
    repo_url: str
    repo_owner: str
    diagram_code: Optional[str] = None
    readme_content: Optional[str] = None
    last_scanned_at: Optional[datetime] = None
    status: RepoStatus = RepoStatus.PENDING
    created_at: datetime
    updated_at: datetime
    repository_diagrams: List[RepositoryDiagram] = Field(default_factory=list)

    @field_validator("repository_diagrams", mode="before")
    @classmethod
    def _null_diagrams_is_empty(cls, value):
        return [] if value is None else value

    @property
    def full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"


class GitHubOwner(_Record):
    login: str


class GitHubRepo(_Record):
    """Repository entry from GitHub's ``/user/repos``."""

    id: int
    name: str
    full_name: str
    html_url: str
    owner: GitHubOwner
    private: bool = False
    description: Optional[str] = None


class Organization(_Record):
    """Row of ``organizations``."""

    id: str
    name: str
    slug: str
    avatar_url: Optional[str] = None
    owner_id: str
    created_at: Optional[datetime] = None


class MemberProfile(_Record):
    github_username: Optional[str] = None
    avatar_url: Optional[str] = None


class OrgMember(_Record):
    """Row of ``org_members`` with the member's profile joined in."""

    id: str
    org_id: str
    user_id: str
    role: MemberRole
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    profile: Optional[MemberProfile] = Field(default=None, alias="profiles")

    @property
    def display_name(self) -> str:
        if self.profile and self.profile.github_username:
            return self.profile.github_username
        return "Unknown User"

    @property
    def since(self) -> Optional[datetime]:
        return self.joined_at or self.invited_at


class Subscription(_Record):
    """Paid subscription summary derived from the profile."""

    tier: PlanTier
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class PaymentRecord(_Record):
    """Row of ``payment_history``. ``amount`` is in minor units (cents)."""

    id: str
    amount: int
    currency: str
    status: str
    description: Optional[str] = None
    created_at: datetime

    @property
    def formatted_amount(self) -> str:
        return f"${self.amount / 100:.2f} {self.currency.upper()}"
