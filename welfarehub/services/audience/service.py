"""Audience evaluation and the segment store.

Preview answers "who would a campaign with these criteria reach, and on which
channels". Segments persist named criteria with a cached user count that is
refreshed lazily once it goes stale.
"""

from datetime import datetime
from time import perf_counter

from sqlalchemy import func, or_, select

from welfarehub.common.auth import Actor
from welfarehub.common.config import settings
from welfarehub.common.errors import Conflict, Forbidden, NotFound
from welfarehub.common.logging import logger
from welfarehub.common.metrics import audience_preview_seconds, segment_recount_failures_total
from welfarehub.common.pagination import page_meta, page_offset
from welfarehub.common.timeutils import isoformat, utcnow
from welfarehub.common.users import User, UserPreferences
from welfarehub.services.audience.criteria import (
    TargetingCriteria,
    build_user_filter,
    channel_reachable,
    classify_activity,
    mask_email,
    mask_phone,
    parse_criteria,
    summarize_criteria,
)
from welfarehub.services.audience.models import AudienceSegment
from welfarehub.services.audience.schemas import SegmentCreateRequest, SegmentListQuery, SegmentUpdateRequest

PREVIEW_SAMPLE_SIZE = 5
SEGMENT_SAMPLE_SIZE = 10
TOP_LOCATIONS = 10

NATURAL_ORDER = (User.created_at, User.user_id)

SEGMENT_SORT_COLUMNS = {
    "createdAt": AudienceSegment.created_at,
    "updatedAt": AudienceSegment.updated_at,
    "name": AudienceSegment.name,
    "userCount": AudienceSegment.user_count,
    "lastUpdated": AudienceSegment.last_updated,
}


def masked_user(user: User, now: datetime | None = None) -> dict:
    """Sample-user view with contact details masked."""

    view = {
        "id": user.user_id,
        "name": user.name,
        "email": mask_email(user.email),
        "phone": mask_phone(user.phone),
        "role": user.role,
        "location": user.location,
        "lastActive": isoformat(user.last_login_at),
    }
    if now is not None:
        view["createdAt"] = isoformat(user.created_at)
        view["activityStatus"] = classify_activity(user, now)
    return view


class AudienceService:
    """Evaluates targeting criteria and owns the segment store."""

    def __init__(self, session_factory, service_name: str = "audience") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def count_users(self, db, criteria: TargetingCriteria, now: datetime) -> int:
        clause = build_user_filter(criteria, now)
        return db.execute(select(func.count()).select_from(User).where(clause)).scalar_one()

    def _sample(self, db, criteria: TargetingCriteria, now: datetime, limit: int, offset: int = 0) -> list[User]:
        clause = build_user_filter(criteria, now)
        stmt = select(User).where(clause).order_by(*NATURAL_ORDER).offset(offset).limit(limit)
        return list(db.execute(stmt).scalars())

    def _demographics(self, db, criteria: TargetingCriteria, now: datetime) -> dict:
        clause = build_user_filter(criteria, now)
        roles = {
            role: count
            for role, count in db.execute(
                select(User.role, func.count()).where(clause).group_by(User.role).order_by(User.role)
            )
        }
        location_count = func.count().label("n")
        top_locations = db.execute(
            select(User.location, location_count)
            .where(clause, User.location.is_not(None), User.location != "")
            .group_by(User.location)
            .order_by(location_count.desc(), User.location)
            .limit(TOP_LOCATIONS)
        ).all()
        with_email = db.execute(
            select(func.count()).select_from(User).where(clause, User.email.is_not(None), User.email != "")
        ).scalar_one()
        with_phone = db.execute(
            select(func.count()).select_from(User).where(clause, User.phone.is_not(None), User.phone != "")
        ).scalar_one()
        return {
            "roles": roles,
            "locations": {location: count for location, count in top_locations},
            "contactMethods": {"email": with_email, "phone": with_phone},
        }

    def preview(
        self,
        criteria,
        channels: list[str] | None = None,
        exclude_opted_out: bool = True,
        now: datetime | None = None,
    ) -> dict:
        """Size the audience for `criteria` and break it down per channel.

        `effectiveAudience` counts each user once no matter how many of the
        requested channels reach them.
        """

        criteria = parse_criteria(criteria)
        now = now or utcnow()
        channels = list(dict.fromkeys(channels or []))
        start = perf_counter()
        with self.session_factory() as db:
            total = self.count_users(db, criteria, now)
            breakdown = {channel: 0 for channel in channels}
            effective = total
            if channels:
                reachable: set[str] = set()
                rows = db.execute(
                    select(User, UserPreferences)
                    .outerjoin(UserPreferences, UserPreferences.user_id == User.user_id)
                    .where(build_user_filter(criteria, now))
                    .order_by(*NATURAL_ORDER)
                )
                for user, preferences in rows:
                    for channel in channels:
                        if channel_reachable(user, preferences, channel, exclude_opted_out):
                            breakdown[channel] += 1
                            reachable.add(user.user_id)
                effective = len(reachable)
            demographics = self._demographics(db, criteria, now)
            samples = [masked_user(user) for user in self._sample(db, criteria, now, PREVIEW_SAMPLE_SIZE)]
        audience_preview_seconds.labels(service=self.service_name).observe(perf_counter() - start)
        logger.info(
            "audience_preview total=%s effective=%s channels=%s", total, effective, ",".join(channels) or "-"
        )
        return {
            "totalUsers": total,
            "channelBreakdown": breakdown,
            "effectiveAudience": effective,
            "demographics": demographics,
            "sampleUsers": samples,
        }

    def _segment_view(self, segment: AudienceSegment, actor: Actor, now: datetime) -> dict:
        return {
            "id": segment.segment_id,
            "name": segment.name,
            "description": segment.description,
            "criteria": segment.criteria,
            "userCount": segment.user_count,
            "lastUpdated": isoformat(segment.last_updated),
            "isShared": segment.is_shared,
            "createdBy": segment.created_by,
            "createdAt": isoformat(segment.created_at),
            "updatedAt": isoformat(segment.updated_at),
            "criteriaSummary": summarize_criteria(segment.criteria),
            "canEdit": segment.editable_by(actor.user_id, actor.role),
            "needsCountUpdate": segment.needs_count_update(now, settings.segment_stale_after_seconds),
        }

    def _name_taken(self, db, name: str, created_by: str, exclude_id: str | None = None) -> bool:
        stmt = select(AudienceSegment.segment_id).where(
            AudienceSegment.name == name, AudienceSegment.created_by == created_by
        )
        if exclude_id:
            stmt = stmt.where(AudienceSegment.segment_id != exclude_id)
        return db.execute(stmt).first() is not None

    def _load_editable(self, db, segment_id: str, actor: Actor) -> AudienceSegment:
        segment = db.get(AudienceSegment, segment_id)
        if segment is None:
            raise NotFound("Segment not found")
        if not segment.editable_by(actor.user_id, actor.role):
            raise Forbidden("Cannot edit this segment")
        return segment

    def _load_visible(self, db, segment_id: str, actor: Actor) -> AudienceSegment:
        segment = db.get(AudienceSegment, segment_id)
        if segment is None or not segment.visible_to(actor.user_id):
            raise NotFound("Segment not found")
        return segment

    def _written_view(self, segment_id: str, actor: Actor, now: datetime) -> dict:
        # No visibility check: admins may edit private segments they cannot read.
        with self.session_factory() as db:
            segment = db.get(AudienceSegment, segment_id)
            if segment is None:
                raise NotFound("Segment not found")
            return self._segment_view(segment, actor, now)

    def recalculate(self, segment_id: str, now: datetime | None = None) -> int:
        """Recount a segment's population and stamp `lastUpdated`."""

        now = now or utcnow()
        with self.session_factory() as db:
            segment = db.get(AudienceSegment, segment_id)
            if segment is None:
                raise NotFound("Segment not found")
            segment.user_count = self.count_users(db, parse_criteria(segment.criteria), now)
            segment.last_updated = now
            db.commit()
            logger.info("segment_recounted segment_id=%s user_count=%s", segment_id, segment.user_count)
            return segment.user_count

    def _recalculate_quietly(self, segment_id: str, now: datetime) -> None:
        """Best-effort recount; a failure leaves the old count in place."""

        try:
            self.recalculate(segment_id, now)
        except Exception as exc:
            segment_recount_failures_total.labels(service=self.service_name).inc()
            logger.exception("segment_recount_failed segment_id=%s error=%s", segment_id, exc)

    def create_segment(self, req: SegmentCreateRequest, actor: Actor, now: datetime | None = None) -> dict:
        now = now or utcnow()
        with self.session_factory() as db:
            if self._name_taken(db, req.name, actor.user_id):
                raise Conflict("A segment with this name already exists")
            segment = AudienceSegment(
                name=req.name,
                description=req.description,
                criteria=req.criteria.model_dump(by_alias=True, exclude_none=True),
                user_count=0,
                last_updated=now,
                is_shared=req.is_shared,
                created_by=actor.user_id,
                created_at=now,
                updated_at=now,
            )
            db.add(segment)
            db.commit()
            segment_id = segment.segment_id
        logger.info("segment_created segment_id=%s created_by=%s", segment_id, actor.user_id)
        self._recalculate_quietly(segment_id, now)
        return self._written_view(segment_id, actor, now)

    def update_segment(
        self, segment_id: str, req: SegmentUpdateRequest, actor: Actor, now: datetime | None = None
    ) -> dict:
        now = now or utcnow()
        criteria_changed = False
        with self.session_factory() as db:
            segment = self._load_editable(db, segment_id, actor)
            if req.name is not None and req.name != segment.name:
                # Names are unique per creator, so check against the owner even when an admin edits.
                if self._name_taken(db, req.name, segment.created_by, exclude_id=segment.segment_id):
                    raise Conflict("A segment with this name already exists")
                segment.name = req.name
            if "description" in req.model_fields_set:
                segment.description = req.description
            if req.is_shared is not None:
                segment.is_shared = req.is_shared
            if req.criteria is not None:
                new_criteria = req.criteria.model_dump(by_alias=True, exclude_none=True)
                criteria_changed = new_criteria != segment.criteria
                segment.criteria = new_criteria
            segment.updated_at = now
            db.commit()
        logger.info("segment_updated segment_id=%s by=%s criteria_changed=%s", segment_id, actor.user_id, criteria_changed)
        if criteria_changed:
            self._recalculate_quietly(segment_id, now)
        return self._written_view(segment_id, actor, now)

    def delete_segment(self, segment_id: str, actor: Actor) -> None:
        # Campaigns copy criteria at creation time, so no reference check here.
        with self.session_factory() as db:
            segment = self._load_editable(db, segment_id, actor)
            db.delete(segment)
            db.commit()
        logger.info("segment_deleted segment_id=%s by=%s", segment_id, actor.user_id)

    def get_segment(
        self,
        segment_id: str,
        actor: Actor,
        include_users: bool = False,
        refresh_count: bool = False,
        now: datetime | None = None,
    ) -> dict:
        """Fetch one visible segment, recounting first when asked or stale."""

        now = now or utcnow()
        with self.session_factory() as db:
            segment = self._load_visible(db, segment_id, actor)
            stale = segment.needs_count_update(now, settings.segment_stale_after_seconds)
        if refresh_count or stale:
            self._recalculate_quietly(segment_id, now)
        with self.session_factory() as db:
            segment = self._load_visible(db, segment_id, actor)
            view = self._segment_view(segment, actor, now)
            if include_users:
                criteria = parse_criteria(segment.criteria)
                view["sampleUsers"] = [masked_user(user) for user in self._sample(db, criteria, now, SEGMENT_SAMPLE_SIZE)]
        return view

    def list_segments(self, query: SegmentListQuery, actor: Actor, now: datetime | None = None) -> dict:
        """Page through segments visible to `actor`.

        The default scope is the caller's own segments plus shared ones. An
        explicit `createdBy` or `isShared` filter replaces that scope; both can
        apply together, and `isShared=false` narrows to the caller's own.
        """

        now = now or utcnow()
        stmt = select(AudienceSegment)
        owner = actor.user_id if query.is_shared is False else query.created_by
        if owner:
            stmt = stmt.where(AudienceSegment.created_by == owner)
        if query.is_shared is True:
            stmt = stmt.where(AudienceSegment.is_shared.is_(True))
        if not owner and query.is_shared is None:
            stmt = stmt.where(or_(AudienceSegment.created_by == actor.user_id, AudienceSegment.is_shared.is_(True)))
        if query.search:
            stmt = stmt.where(AudienceSegment.name.ilike(f"%{query.search}%"))

        sort_column = SEGMENT_SORT_COLUMNS[query.sort_by]
        ordering = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()
        stmt = stmt.order_by(ordering, AudienceSegment.segment_id)

        with self.session_factory() as db:
            if query.roles or query.locations:
                # Criteria live in a JSON document; filter those in memory.
                segments = [
                    segment
                    for segment in db.execute(stmt).scalars()
                    if self._criteria_overlap(segment.criteria, query.roles, query.locations)
                ]
                total_count = len(segments)
                offset = page_offset(query.page, query.limit)
                segments = segments[offset : offset + query.limit]
            else:
                total_count = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
                segments = list(
                    db.execute(stmt.offset(page_offset(query.page, query.limit)).limit(query.limit)).scalars()
                )
            views = [self._segment_view(segment, actor, now) for segment in segments]
        return {"segments": views, "pagination": page_meta(query.page, query.limit, total_count)}

    @staticmethod
    def _criteria_overlap(criteria: dict, roles: list[str], locations: list[str]) -> bool:
        if roles and not set(roles) & set(criteria.get("roles", [])):
            return False
        if locations and not set(locations) & set(criteria.get("locations", [])):
            return False
        return True

    def list_segment_users(
        self, segment_id: str, actor: Actor, page: int = 1, limit: int = 50, now: datetime | None = None
    ) -> dict:
        """Page through the users a segment currently matches."""

        now = now or utcnow()
        with self.session_factory() as db:
            self._load_visible(db, segment_id, actor)
        self._recalculate_quietly(segment_id, now)
        with self.session_factory() as db:
            segment = self._load_visible(db, segment_id, actor)
            criteria = parse_criteria(segment.criteria)
            total_count = self.count_users(db, criteria, now)
            users = self._sample(db, criteria, now, limit, offset=page_offset(page, limit))
            segment_summary = {
                "id": segment.segment_id,
                "name": segment.name,
                "criteriaSummary": summarize_criteria(segment.criteria),
                "userCount": segment.user_count,
            }
        views = [masked_user(user, now) for user in users]
        return {
            "segment": segment_summary,
            "users": views,
            "pagination": page_meta(page, limit, total_count),
            "demographics": self._page_demographics(users, views),
        }

    @staticmethod
    def _page_demographics(users: list[User], views: list[dict]) -> dict:
        roles: dict[str, int] = {}
        locations: dict[str, int] = {}
        activity = {"active": 0, "inactive": 0, "new": 0}
        contact = {"email": 0, "phone": 0, "both": 0, "none": 0}
        for user, view in zip(users, views):
            roles[user.role] = roles.get(user.role, 0) + 1
            if user.location:
                locations[user.location] = locations.get(user.location, 0) + 1
            activity[view["activityStatus"]] += 1
            if user.email and user.phone:
                contact["both"] += 1
            elif user.email:
                contact["email"] += 1
            elif user.phone:
                contact["phone"] += 1
            else:
                contact["none"] += 1
        return {"roles": roles, "locations": locations, "activityStatus": activity, "contactMethods": contact}
