"""
Member Registry Module

Adds, edits, retires and removes cooperative members. Retiring is a status
flip that keeps every record; delete removes the member itself.
"""

from typing import List, Optional
import logging
import uuid

from .activity import ActivityType
from .dates import DateLike, parse_date
from .errors import MemberNotFound
from .logging_config import log_action
from .models import Member, MemberStatus
from .notifications import NotificationKind

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ('name', 'phone', 'join_date', 'notes')


class MemberManager:

    def __init__(self, coop):
        self.coop = coop

    def get(self, member_id: str) -> Optional[Member]:
        return self.coop.state.members.get(member_id)

    def require(self, member_id: str) -> Member:
        member = self.get(member_id)
        if member is None:
            raise MemberNotFound(member_id)
        return member

    def list(self, status: Optional[MemberStatus] = None) -> List[Member]:
        members = list(self.coop.state.members.values())
        if status is not None:
            members = [m for m in members if m.status == status]
        return members

    def add(self, name: str, phone: str = "", join_date: Optional[DateLike] = None,
            notes: Optional[str] = None) -> Member:
        if not name or not name.strip():
            raise ValueError("Member name is required")

        with self.coop.atomic():
            now = self.coop.clock.now()
            member = Member(
                id=str(uuid.uuid4()),
                name=name.strip(),
                phone=phone,
                join_date=parse_date(join_date) if join_date else now.date(),
                created_at=now,
                updated_at=now,
                notes=notes
            )
            self.coop.state.members[member.id] = member
            self.coop.activity.log(
                ActivityType.MEMBER_ADD, f"Member added: {member.name}",
                details={"member": member.to_dict()}, reference_id=member.id
            )

        log_action(logger, "info", "Member added", action="member_added",
                   entity_type="member", entity_id=member.id)
        self.coop.notify(NotificationKind.SUCCESS, "Member added", f"{member.name} joined the cooperative")
        return member

    def update(self, member_id: str, **changes) -> Member:
        """Edit contact fields; balances are managed by contributions"""
        member = self.require(member_id)
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update member fields: {', '.join(sorted(unknown))}")
        if 'name' in changes and not (changes['name'] or '').strip():
            raise ValueError("Member name is required")

        with self.coop.atomic():
            before = member.to_dict()
            for key, value in changes.items():
                if key == 'join_date':
                    value = parse_date(value)
                elif key == 'name':
                    value = value.strip()
                setattr(member, key, value)
            member.updated_at = self.coop.clock.now()
            self.coop.activity.log(
                ActivityType.MEMBER_EDIT, f"Member updated: {member.name}",
                details={"old": before, "new": member.to_dict()}, reference_id=member.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Member updated")
        return member

    def set_status(self, member_id: str, status: MemberStatus) -> Member:
        member = self.require(member_id)
        status = MemberStatus(status)
        if member.status == status:
            return member

        with self.coop.atomic():
            previous = member.status
            member.status = status
            member.updated_at = self.coop.clock.now()
            activity_type = (ActivityType.MEMBER_INACTIVE if status == MemberStatus.INACTIVE
                             else ActivityType.MEMBER_EDIT)
            self.coop.activity.log(
                activity_type, f"Member {member.name} is now {status.value}",
                details={"old_status": previous, "new_status": status}, reference_id=member.id
            )

        self.coop.notify(NotificationKind.SUCCESS, "Member updated", f"{member.name} is now {status.value}")
        return member

    def retire(self, member_id: str) -> Member:
        """Soft removal: mark inactive and keep all history"""
        return self.set_status(member_id, MemberStatus.INACTIVE)

    def delete(self, member_id: str) -> Member:
        """Hard removal of the member record; loans and contributions are kept"""
        member = self.require(member_id)
        with self.coop.atomic():
            del self.coop.state.members[member.id]
            self.coop.activity.log(
                ActivityType.MEMBER_DELETE, f"Member deleted: {member.name}",
                details={"member": member.to_dict()}, reference_id=member.id
            )

        log_action(logger, "info", "Member deleted", action="member_deleted",
                   entity_type="member", entity_id=member.id)
        self.coop.notify(NotificationKind.SUCCESS, "Member deleted")
        return member
