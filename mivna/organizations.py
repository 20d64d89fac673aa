"""Organizations (teams) and their members.

The active organization is remembered between commands in
``<session_dir>/active_org.json``. With no active organization the user
works in their personal context.
"""

import json
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mivna.auth import AuthService, NotAuthenticatedError
from mivna.backend import BackendClient
from mivna.logging_config import get_logger
from mivna.models import MemberRole, Organization, OrgMember, PlanTier

logger = get_logger(__name__)

ACTIVE_ORG_FILE_NAME = "active_org.json"

# Organizations a user may own, per plan
ORG_LIMITS = {
    PlanTier.FREE: 1,
    PlanTier.PRO: 5,
    PlanTier.ENTERPRISE: math.inf,
}

MANAGER_ROLES = (MemberRole.OWNER, MemberRole.ADMIN)

_SLUG_INVALID_CHARS = re.compile(r"[^a-z0-9-]")


class OrgLimitError(Exception):
    """Raised when the user already owns as many organizations as the plan allows."""

    def __init__(self, limit: Union[int, float], tier: PlanTier):
        plural = "" if limit == 1 else "s"
        super().__init__(
            f"You've reached the limit of {limit} organization{plural} for the "
            f"{tier.value} plan. Upgrade to Pro for more."
        )
        self.limit = limit
        self.tier = tier


class OrgPermissionError(Exception):
    """Raised when the user's role does not allow a team action."""

    pass


def normalize_slug(slug: str) -> str:
    """Lower-case a slug and replace anything outside ``[a-z0-9-]`` with ``-``."""
    return _SLUG_INVALID_CHARS.sub("-", slug.lower())


def org_limit_for(tier: PlanTier) -> Union[int, float]:
    return ORG_LIMITS.get(tier, ORG_LIMITS[PlanTier.FREE])


@dataclass(frozen=True)
class MemberActions:
    """Which team actions to offer for one member row."""

    can_change_role: bool
    can_remove: bool
    is_you: bool


def member_actions(member: OrgMember, current_user_id: Optional[str], can_manage: bool) -> MemberActions:
    """Work out the actions available on a member.

    Owners can neither be re-roled nor removed, and nobody removes
    themselves from the member list.
    """
    is_owner = member.role == MemberRole.OWNER
    is_you = member.user_id == current_user_id
    return MemberActions(
        can_change_role=can_manage and not is_owner,
        can_remove=can_manage and not is_owner and not is_you,
        is_you=is_you,
    )


@dataclass
class OrganizationState:
    current_org: Optional[Organization] = None
    user_orgs: List[Organization] = field(default_factory=list)
    memberships: List[OrgMember] = field(default_factory=list)
    loading: bool = True


class OrganizationService:
    """Organization context and team management for the signed-in user."""

    def __init__(self, backend: BackendClient, auth: AuthService, session_dir: Path):
        self.backend = backend
        self.auth = auth
        self.active_org_file = Path(session_dir) / ACTIVE_ORG_FILE_NAME
        self.state = OrganizationState()

    # -- context -----------------------------------------------------------

    @property
    def current_org(self) -> Optional[Organization]:
        return self.state.current_org

    @property
    def user_orgs(self) -> List[Organization]:
        return self.state.user_orgs

    @property
    def is_personal_context(self) -> bool:
        return self.state.current_org is None

    def _user_id(self) -> str:
        user = self.auth.user
        if user is None:
            raise NotAuthenticatedError()
        return user.id

    async def fetch_user_orgs(self) -> List[Organization]:
        """Load the organizations the user belongs to and restore the active one."""
        user = self.auth.user
        if user is None:
            self.state = OrganizationState(loading=False)
            return []

        try:
            rows = await (
                self.backend.table("org_members")
                .select("*, organizations(*)")
                .eq("user_id", user.id)
                .execute()
            ) or []
        finally:
            self.state.loading = False

        self.state.user_orgs = [
            Organization.model_validate(row["organizations"])
            for row in rows
            if row.get("organizations")
        ]
        self.state.memberships = [
            OrgMember.model_validate({k: v for k, v in row.items() if k != "organizations"})
            for row in rows
        ]
        self._restore_current_org()
        return self.state.user_orgs

    def _restore_current_org(self) -> None:
        saved_id = self._read_active_org_id()
        if saved_id is None:
            return
        self.state.current_org = next(
            (org for org in self.state.user_orgs if org.id == saved_id), None
        )

    def _read_active_org_id(self) -> Optional[str]:
        if not self.active_org_file.exists():
            return None
        try:
            return json.loads(self.active_org_file.read_text()).get("org_id")
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable active organization file: {e}")
            return None

    def set_current_org(self, org: Optional[Organization]) -> None:
        """Switch context to ``org`` (None for personal) and remember it."""
        self.state.current_org = org
        if org is None:
            if self.active_org_file.exists():
                self.active_org_file.unlink()
            return

        self.active_org_file.parent.mkdir(parents=True, exist_ok=True)
        self.active_org_file.write_text(json.dumps({
            "org_id": org.id,
            "org_slug": org.slug,
            "org_name": org.name,
        }, indent=2))
        self.active_org_file.chmod(0o600)

    def find_org(self, id_or_slug: str) -> Optional[Organization]:
        for org in self.state.user_orgs:
            if id_or_slug in (org.id, org.slug):
                return org
        return None

    # -- organizations -------------------------------------------------------

    async def create_org(self, name: str, slug: str) -> Organization:
        """Create an organization owned by the user.

        Raises:
            OrgLimitError: If the user's plan does not allow another one
        """
        user_id = self._user_id()
        profile = self.auth.profile
        tier = profile.subscription_tier if profile else PlanTier.FREE
        limit = org_limit_for(tier)

        owned = [org for org in self.state.user_orgs if org.owner_id == user_id]
        if len(owned) >= limit:
            raise OrgLimitError(limit, tier)

        row = await self.backend.table("organizations").insert({
            "name": name,
            "slug": normalize_slug(slug),
            "owner_id": user_id,
        }).select().single().execute()

        org = Organization.model_validate(row)
        logger.info(f"Created organization {org.slug}")
        await self.fetch_user_orgs()
        return org

    async def update_org(self, org_id: str, updates: Dict[str, Any]) -> Optional[Organization]:
        """Rename an organization or change its slug (owners and admins only).

        Returns:
            The refreshed Organization, or None if it is no longer visible
        """
        if not self.can_manage_members(org_id):
            raise OrgPermissionError("Only owners and admins can update an organization")

        if "slug" in updates:
            updates = {**updates, "slug": normalize_slug(updates["slug"])}
        await self.backend.table("organizations").update(updates).eq("id", org_id).execute()
        logger.info(f"Updated organization {org_id}: {', '.join(sorted(updates))}")
        await self.fetch_user_orgs()
        return self.find_org(org_id)

    async def delete_org(self, org_id: str) -> None:
        """Delete an organization; only its owner may do so."""
        if self.user_role(org_id) != MemberRole.OWNER:
            raise OrgPermissionError("Only the owner can delete an organization")

        await self.backend.table("organizations").delete().eq("id", org_id).execute()
        logger.info(f"Deleted organization {org_id}")

        if self.state.current_org and self.state.current_org.id == org_id:
            self.set_current_org(None)
        await self.fetch_user_orgs()

    # -- members -------------------------------------------------------------

    async def get_members(self, org_id: str) -> List[OrgMember]:
        rows = await (
            self.backend.table("org_members")
            .select("*, profiles(github_username, avatar_url)")
            .eq("org_id", org_id)
            .execute()
        )
        return [OrgMember.model_validate(row) for row in rows or []]

    async def invite_member(self, org_id: str, user_id: str, role: MemberRole = MemberRole.MEMBER) -> None:
        await self.backend.table("org_members").insert({
            "org_id": org_id,
            "user_id": user_id,
            "role": MemberRole(role).value,
            "invited_by": self._user_id(),
        }).execute()
        logger.info(f"Invited {user_id} to {org_id} as {MemberRole(role).value}")

    async def update_member_role(self, member: OrgMember, role: MemberRole) -> None:
        if not member_actions(member, self._user_id(), self.can_manage_members(member.org_id)).can_change_role:
            raise OrgPermissionError("You cannot change this member's role")
        await self.backend.table("org_members").update(
            {"role": MemberRole(role).value}
        ).eq("id", member.id).execute()

    async def remove_member(self, member: OrgMember) -> None:
        """Remove a member from their organization.

        Raises:
            OrgPermissionError: For the owner, yourself, or without manage rights
        """
        if member.role == MemberRole.OWNER:
            raise OrgPermissionError("Cannot remove the owner")
        if not member_actions(member, self._user_id(), self.can_manage_members(member.org_id)).can_remove:
            raise OrgPermissionError("You cannot remove this member")
        await self.backend.table("org_members").delete().eq("id", member.id).execute()
        logger.info(f"Removed member {member.id}")

    # -- roles -------------------------------------------------------------

    def user_role(self, org_id: str) -> Optional[MemberRole]:
        for membership in self.state.memberships:
            if membership.org_id == org_id:
                return membership.role
        return None

    def can_manage_members(self, org_id: Optional[str] = None) -> bool:
        """Owners and admins manage members (of the current org by default)."""
        if org_id is None:
            if self.state.current_org is None:
                return False
            org_id = self.state.current_org.id
        return self.user_role(org_id) in MANAGER_ROLES
