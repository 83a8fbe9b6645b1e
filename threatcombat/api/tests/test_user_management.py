"""
User Management Tests

Validates chapter scoping of every administrative operation, the
executive promotion lifecycle and the role assignment rules.

These tests prove the invariant:
"An administrator never reaches outside their own chapter."
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from threatcombat.api.access.audit import AuditAction
from threatcombat.api.access.rbac import Role
from threatcombat.api.db.models import Chapter, ExecutivePosition, MembershipStatus, User
from threatcombat.api.errors import ValidationError
from threatcombat.api.services.notifications import NotificationKind


USERS_URL = "/api/v1/users"


# ==================== Chapter Scoping ====================


SCOPED_OPERATIONS = [
    ("GET", "/{id}", None),
    ("PATCH", "/{id}", {"membership_status": "suspended"}),
    ("DELETE", "/{id}", None),
    ("POST", "/{id}/promote", {"position": "President", "term": "2025-2026"}),
    ("POST", "/{id}/demote", None),
    ("POST", "/{id}/activate", None),
    ("POST", "/{id}/suspend", None),
    ("POST", "/{id}/assign-executive", None),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("method, path, body", SCOPED_OPERATIONS)
async def test_chapter_admin_cannot_reach_other_chapter(
    async_client: AsyncClient,
    admin_a: User,
    member_b: User,
    headers_for,
    db_session,
    method,
    path,
    body,
):
    url = USERS_URL + path.format(id=member_b.id)
    response = await async_client.request(method, url, json=body, headers=headers_for(admin_a))

    assert response.status_code == 403
    assert response.json()["code"] == "CROSS_CHAPTER"

    await db_session.refresh(member_b)
    assert member_b.role == "member"
    assert member_b.membership_status == MembershipStatus.ACTIVE


@pytest.mark.asyncio
async def test_chapter_members_of_other_chapter(
    async_client: AsyncClient, admin_a: User, executive_a: User, chapter_b: Chapter, headers_for
):
    for actor in (admin_a, executive_a):
        response = await async_client.get(
            f"{USERS_URL}/chapter/{chapter_b.id}", headers=headers_for(actor)
        )
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_chapter_members_cross_chapter_roles(
    async_client: AsyncClient, partner: User, super_admin: User, member_b: User, chapter_b, headers_for
):
    for actor in (partner, super_admin):
        response = await async_client.get(
            f"{USERS_URL}/chapter/{chapter_b.id}", headers=headers_for(actor)
        )
        assert response.status_code == 200
        assert [u["id"] for u in response.json()["users"]] == [str(member_b.id)]


@pytest.mark.asyncio
async def test_stats_of_other_chapter(async_client: AsyncClient, admin_a: User, chapter_b, headers_for):
    response = await async_client.get(
        f"{USERS_URL}/stats", params={"chapter_id": str(chapter_b.id)}, headers=headers_for(admin_a)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_users_is_scoped(
    async_client: AsyncClient,
    admin_a: User,
    member_a: User,
    member_b: User,
    chapter_b: Chapter,
    headers_for,
):
    response = await async_client.get(
        f"{USERS_URL}/", params={"chapter_id": str(chapter_b.id)}, headers=headers_for(admin_a)
    )

    assert response.status_code == 200
    ids = {u["id"] for u in response.json()["users"]}
    assert str(member_a.id) in ids
    assert str(member_b.id) not in ids


@pytest.mark.asyncio
async def test_super_admin_lists_everyone(
    async_client: AsyncClient, super_admin: User, member_a: User, member_b: User, headers_for
):
    response = await async_client.get(f"{USERS_URL}/", headers=headers_for(super_admin))

    ids = {u["id"] for u in response.json()["users"]}
    assert {str(member_a.id), str(member_b.id)} <= ids


@pytest.mark.asyncio
async def test_members_cannot_list_users(async_client: AsyncClient, member_a: User, headers_for):
    response = await async_client.get(f"{USERS_URL}/", headers=headers_for(member_a))

    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ROLE"


@pytest.mark.asyncio
async def test_user_stats(
    async_client: AsyncClient, admin_a: User, member_a: User, executive_a: User, headers_for
):
    response = await async_client.get(f"{USERS_URL}/stats", headers=headers_for(admin_a))

    assert response.status_code == 200
    stats = response.json()
    assert stats["total_users"] == 3
    assert stats["executives"] == 1
    assert stats["chapter_admins"] == 1


# ==================== Profiles ====================


@pytest.mark.asyncio
async def test_member_directory_spans_chapters(
    async_client: AsyncClient,
    partner: User,
    member_a: User,
    member_b: User,
    make_user,
    chapter_a,
    headers_for,
):
    await make_user(
        "waiting.a@threatcombat.com", chapter=chapter_a, membership_status=MembershipStatus.PENDING
    )

    response = await async_client.get(f"{USERS_URL}/directory", headers=headers_for(partner))

    assert response.status_code == 200
    members = response.json()["members"]
    assert {m["id"] for m in members} == {str(member_a.id), str(member_b.id)}
    assert all("email" not in m and "phone" not in m for m in members)

    one_chapter = await async_client.get(
        f"{USERS_URL}/directory", params={"chapter_id": str(chapter_a.id)}, headers=headers_for(partner)
    )
    assert [m["id"] for m in one_chapter.json()["members"]] == [str(member_a.id)]


@pytest.mark.asyncio
async def test_member_directory_needs_cross_chapter_access(
    async_client: AsyncClient, admin_a: User, headers_for
):
    response = await async_client.get(f"{USERS_URL}/directory", headers=headers_for(admin_a))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_own_profile(async_client: AsyncClient, member_a: User, headers_for, audit_entries):
    response = await async_client.patch(
        f"{USERS_URL}/me",
        json={"bio": "Blue teamer", "phone": "+254700000000"},
        headers=headers_for(member_a),
    )

    assert response.status_code == 200
    assert response.json()["bio"] == "Blue teamer"
    entries = await audit_entries(AuditAction.USER_UPDATE)
    assert entries[0].risk_level == "MEDIUM"


@pytest.mark.asyncio
async def test_member_cannot_view_another_member(
    async_client: AsyncClient, member_a: User, executive_a: User, headers_for
):
    response = await async_client.get(f"{USERS_URL}/{executive_a.id}", headers=headers_for(member_a))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cannot_change_own_membership_status(async_client: AsyncClient, admin_a: User, headers_for):
    response = await async_client.patch(
        f"{USERS_URL}/{admin_a.id}",
        json={"membership_status": "suspended"},
        headers=headers_for(admin_a),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "SELF_MODIFICATION"


@pytest.mark.asyncio
async def test_suspend_and_activate(
    async_client: AsyncClient, admin_a: User, member_a: User, headers_for, notifier, audit_entries
):
    suspended = await async_client.post(
        f"{USERS_URL}/{member_a.id}/suspend",
        json={"reason": "Repeated code of conduct violations"},
        headers=headers_for(admin_a),
    )
    assert suspended.json()["membership_status"] == "suspended"
    assert notifier.last(NotificationKind.ACCOUNT_SUSPENSION)["reason"] == (
        "Repeated code of conduct violations"
    )

    activated = await async_client.post(
        f"{USERS_URL}/{member_a.id}/activate", headers=headers_for(admin_a)
    )
    assert activated.json()["membership_status"] == "active"
    assert notifier.last(NotificationKind.ACCOUNT_ACTIVATION) is not None

    suspend_entry = (await audit_entries(AuditAction.USER_SUSPEND))[0]
    assert suspend_entry.risk_level == "HIGH"
    assert suspend_entry.requires_review is False


@pytest.mark.asyncio
async def test_suspended_administrator_token_stops_working(
    async_client: AsyncClient, admin_a: User, member_a: User, headers_for, db_session
):
    headers = headers_for(admin_a)

    admin_a.membership_status = MembershipStatus.SUSPENDED
    await db_session.commit()

    response = await async_client.post(f"{USERS_URL}/{member_a.id}/suspend", headers=headers)

    assert response.status_code == 403
    assert response.json()["code"] == "MEMBERSHIP_INACTIVE"
    await db_session.refresh(member_a)
    assert member_a.membership_status == MembershipStatus.ACTIVE


@pytest.mark.asyncio
async def test_super_admin_token_survives_status(
    async_client: AsyncClient, super_admin: User, headers_for, db_session
):
    super_admin.membership_status = MembershipStatus.INACTIVE
    await db_session.commit()

    response = await async_client.get(f"{USERS_URL}/me", headers=headers_for(super_admin))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_delete_user(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a, headers_for, db_session, audit_entries
):
    response = await async_client.delete(f"{USERS_URL}/{member_a.id}", headers=headers_for(admin_a))

    assert response.status_code == 200
    assert await db_session.get(User, member_a.id) is None

    entry = (await audit_entries(AuditAction.USER_DELETE))[0]
    assert entry.resource_id == str(member_a.id)
    assert entry.risk_level == "CRITICAL"
    assert entry.requires_review is True


@pytest.mark.asyncio
async def test_cannot_delete_self(async_client: AsyncClient, super_admin: User, headers_for):
    response = await async_client.delete(
        f"{USERS_URL}/{super_admin.id}", headers=headers_for(super_admin)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_chapter_roles_need_a_chapter(make_user):
    with pytest.raises(ValidationError):
        await make_user("orphan@threatcombat.com", Role.EXECUTIVE)


@pytest.mark.asyncio
async def test_unknown_user(async_client: AsyncClient, super_admin: User, headers_for):
    response = await async_client.get(f"{USERS_URL}/{uuid4()}", headers=headers_for(super_admin))

    assert response.status_code == 404
    assert response.json()["code"] == "USER_NOT_FOUND"


# ==================== Executive Lifecycle ====================


async def _promote(client, actor_headers, user, position="President", term="2025-2026"):
    return await client.post(
        f"{USERS_URL}/{user.id}/promote",
        json={"position": position, "term": term},
        headers=actor_headers,
    )


@pytest.mark.asyncio
async def test_promote_and_demote_round_trip(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a: Chapter, headers_for, db_session
):
    promoted = await _promote(async_client, headers_for(admin_a), member_a)

    assert promoted.status_code == 200
    assert promoted.json()["role"] == "executive"
    assert promoted.json()["executive_position"] == "President"
    assert promoted.json()["executive_term"] == "2025-2026"

    await db_session.refresh(chapter_a)
    [entry] = chapter_a.executive_team
    assert entry.user_id == member_a.id
    assert entry.end_date is None

    demoted = await async_client.post(
        f"{USERS_URL}/{member_a.id}/demote", headers=headers_for(admin_a)
    )

    assert demoted.status_code == 200
    assert demoted.json()["role"] == "member"

    await db_session.refresh(member_a)
    await db_session.refresh(chapter_a)
    assert member_a.executive_end_date is not None
    assert chapter_a.executive_team[0].end_date is not None
    assert chapter_a.current_executives == []


@pytest.mark.asyncio
async def test_promote_requires_position_and_term(
    async_client: AsyncClient, admin_a: User, member_a: User, headers_for
):
    response = await async_client.post(
        f"{USERS_URL}/{member_a.id}/promote",
        json={"position": "President"},
        headers=headers_for(admin_a),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Position and term are required"


@pytest.mark.asyncio
async def test_position_cannot_be_doubly_occupied(
    async_client: AsyncClient, admin_a: User, member_a: User, make_user, chapter_a, headers_for
):
    other = await make_user("other.a@threatcombat.com", chapter=chapter_a)

    first = await _promote(async_client, headers_for(admin_a), member_a)
    second = await _promote(async_client, headers_for(admin_a), other)

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["message"] == "Position already occupied"


@pytest.mark.asyncio
async def test_moving_position_closes_previous_entry(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a: Chapter, headers_for, db_session
):
    await _promote(async_client, headers_for(admin_a), member_a, "Secretary")
    response = await _promote(async_client, headers_for(admin_a), member_a, "Treasurer")

    assert response.json()["executive_position"] == "Treasurer"

    await db_session.refresh(chapter_a)
    open_entries = chapter_a.current_executives
    assert len(open_entries) == 1
    assert open_entries[0].position == ExecutivePosition.TREASURER
    assert len(chapter_a.executive_team) == 2


@pytest.mark.asyncio
async def test_roster_removal_ends_promotion(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a: Chapter, headers_for, db_session
):
    promoted = await _promote(async_client, headers_for(admin_a), member_a)
    [entry] = (
        await async_client.get(f"/api/v1/chapters/{chapter_a.id}")
    ).json()["executive_team"]

    removed = await async_client.delete(
        f"/api/v1/chapters/{chapter_a.id}/executives/{entry['id']}",
        headers=headers_for(admin_a),
    )

    assert promoted.status_code == 200
    assert removed.status_code == 200
    await db_session.refresh(member_a)
    assert member_a.role == Role.MEMBER
    assert member_a.executive_end_date is not None

    again = await _promote(async_client, headers_for(admin_a), member_a)
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_roster_seat_can_be_demoted(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a: Chapter, headers_for, db_session
):
    added = await async_client.post(
        f"/api/v1/chapters/{chapter_a.id}/executives",
        json={"user_id": str(member_a.id), "position": "Secretary", "term": "2025-2026"},
        headers=headers_for(admin_a),
    )
    assert added.status_code == 200

    demoted = await async_client.post(
        f"{USERS_URL}/{member_a.id}/demote", headers=headers_for(admin_a)
    )

    assert demoted.status_code == 200
    assert demoted.json()["role"] == "member"
    await db_session.refresh(chapter_a)
    assert chapter_a.current_executives == []


@pytest.mark.asyncio
async def test_promote_refuses_administrators(
    async_client: AsyncClient, super_admin: User, admin_a: User, headers_for
):
    response = await _promote(async_client, headers_for(super_admin), admin_a)

    assert response.status_code == 403
    assert response.json()["code"] == "INVALID_TARGET_ROLE"


@pytest.mark.asyncio
async def test_demote_requires_executive(async_client: AsyncClient, admin_a: User, member_a: User, headers_for):
    response = await async_client.post(
        f"{USERS_URL}/{member_a.id}/demote", headers=headers_for(admin_a)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_promotion_by_admin_is_not_flagged(
    async_client: AsyncClient, admin_a: User, member_a: User, headers_for, audit_entries
):
    await _promote(async_client, headers_for(admin_a), member_a)

    entry = (await audit_entries(AuditAction.USER_PROMOTE))[0]
    assert entry.risk_level == "HIGH"
    assert entry.requires_review is False
    assert entry.user_chapter_id == admin_a.chapter_id


# ==================== Role Assignment ====================


async def _assign(client, actor_headers, email, role, chapter_id=None):
    body = {"email": email, "role": role}
    if chapter_id is not None:
        body["chapter_id"] = str(chapter_id)
    return await client.post(f"{USERS_URL}/assign-admin-role", json=body, headers=actor_headers)


@pytest.mark.asyncio
async def test_industry_partner_becomes_super_admin(
    async_client: AsyncClient, super_admin: User, make_user, headers_for, notifier
):
    partner = await make_user(
        "newpartner@acme.io",
        role=Role.INDUSTRY_PARTNER,
        membership_status=MembershipStatus.PENDING,
        email_verified=False,
    )

    response = await _assign(async_client, headers_for(super_admin), partner.email, "super_admin")

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "super_admin"
    assert body["membership_status"] == "active"
    assert body["email_verified"] is True
    assert notifier.last(NotificationKind.ROLE_ASSIGNMENT)["role"] == "super_admin"


@pytest.mark.asyncio
async def test_only_industry_partners_become_super_admin(
    async_client: AsyncClient, super_admin: User, member_a: User, headers_for
):
    response = await _assign(async_client, headers_for(super_admin), member_a.email, "super_admin")

    assert response.status_code == 403
    assert response.json()["code"] == "INVALID_TARGET_ROLE"


@pytest.mark.asyncio
async def test_assign_chapter_admin(
    async_client: AsyncClient, super_admin: User, member_a: User, chapter_a, headers_for
):
    response = await _assign(
        async_client, headers_for(super_admin), member_a.email, "chapter_admin", chapter_a.id
    )

    assert response.status_code == 200
    assert response.json()["role"] == "chapter_admin"
    assert response.json()["permissions"]["can_manage_users"] is True


@pytest.mark.asyncio
async def test_chapter_admin_role_needs_matching_chapter(
    async_client: AsyncClient, super_admin: User, member_a: User, chapter_b, headers_for
):
    missing = await _assign(async_client, headers_for(super_admin), member_a.email, "chapter_admin")
    assert missing.status_code == 400

    wrong = await _assign(
        async_client, headers_for(super_admin), member_a.email, "chapter_admin", chapter_b.id
    )
    assert wrong.status_code == 403
    assert wrong.json()["code"] == "CROSS_CHAPTER"


@pytest.mark.asyncio
async def test_chapter_admin_cannot_grant_admin_roles(
    async_client: AsyncClient, admin_a: User, member_a: User, chapter_a, headers_for
):
    response = await _assign(
        async_client, headers_for(admin_a), member_a.email, "chapter_admin", chapter_a.id
    )

    assert response.status_code == 403
    assert response.json()["code"] == "INVALID_TARGET_ROLE"


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["executive", "chapter_admin", "super_admin"])
async def test_nobody_assigns_their_own_role(
    async_client: AsyncClient, super_admin: User, headers_for, role
):
    response = await _assign(async_client, headers_for(super_admin), super_admin.email, role)

    assert response.status_code == 403
    assert response.json()["code"] == "SELF_MODIFICATION"


@pytest.mark.asyncio
async def test_cross_chapter_assignment_is_audited(
    async_client: AsyncClient, admin_a: User, member_b: User, headers_for, audit_entries
):
    response = await _assign(async_client, headers_for(admin_a), member_b.email, "executive")

    assert response.status_code == 403
    assert response.json()["code"] == "CROSS_CHAPTER"

    [entry] = await audit_entries(AuditAction.ROLE_ASSIGNMENT)
    assert entry.success is False
    assert entry.status_code == 403
    assert entry.user_id == admin_a.id
    assert entry.risk_level == "HIGH"


@pytest.mark.asyncio
async def test_members_cannot_assign_roles(
    async_client: AsyncClient, member_a: User, make_user, chapter_a, headers_for, audit_entries
):
    other = await make_user("other.a@threatcombat.com", chapter=chapter_a)

    response = await _assign(async_client, headers_for(member_a), other.email, "executive")

    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ROLE"

    [entry] = await audit_entries(AuditAction.ROLE_ASSIGNMENT)
    assert entry.requires_review is True


@pytest.mark.asyncio
async def test_assign_executive_in_own_chapter(
    async_client: AsyncClient, admin_a: User, make_user, chapter_a, headers_for
):
    pending = await make_user(
        "new.a@threatcombat.com",
        chapter=chapter_a,
        membership_status=MembershipStatus.PENDING,
        email_verified=False,
    )

    response = await async_client.post(
        f"{USERS_URL}/{pending.id}/assign-executive", headers=headers_for(admin_a)
    )

    assert response.status_code == 200
    assert response.json()["role"] == "executive"
    assert response.json()["membership_status"] == "active"
    assert response.json()["email_verified"] is True


@pytest.mark.asyncio
async def test_assign_executive_twice(
    async_client: AsyncClient, admin_a: User, executive_a: User, headers_for
):
    response = await async_client.post(
        f"{USERS_URL}/{executive_a.id}/assign-executive", headers=headers_for(admin_a)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_assign_executive_is_chapter_admin_only(
    async_client: AsyncClient, super_admin: User, member_a: User, headers_for
):
    response = await async_client.post(
        f"{USERS_URL}/{member_a.id}/assign-executive", headers=headers_for(super_admin)
    )
    assert response.status_code == 403
