"""
Chapter Tests

Public chapter directory, chapter administration and the executive roster.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from threatcombat.api.access.audit import AuditAction
from threatcombat.api.access.rbac import Role
from threatcombat.api.db.models import Chapter, ChapterStatus, ExecutivePosition, User


CHAPTERS_URL = "/api/v1/chapters"


def _new_chapter(**overrides) -> dict:
    data = {
        "name": "JKUAT Chapter",
        "university": "Jomo Kenyatta University",
        "location": "Juja",
    }
    data.update(overrides)
    return data


# ==================== Directory ====================


@pytest.mark.asyncio
async def test_directory_is_public(async_client: AsyncClient, chapter_a: Chapter, chapter_b: Chapter):
    response = await async_client.get(f"{CHAPTERS_URL}/")

    assert response.status_code == 200
    assert {c["name"] for c in response.json()} == {chapter_a.name, chapter_b.name}


@pytest.mark.asyncio
async def test_directory_filters(async_client: AsyncClient, chapter_a: Chapter, db_session):
    pending = Chapter(
        name="Moi Chapter", university="Moi University", location="Eldoret",
        status=ChapterStatus.PENDING,
    )
    db_session.add(pending)
    await db_session.commit()

    active = await async_client.get(f"{CHAPTERS_URL}/active")
    assert [c["name"] for c in active.json()] == [chapter_a.name]

    by_status = await async_client.get(f"{CHAPTERS_URL}/", params={"status": "pending"})
    assert [c["name"] for c in by_status.json()] == ["Moi Chapter"]

    by_location = await async_client.get(f"{CHAPTERS_URL}/location/nairobi")
    assert [c["name"] for c in by_location.json()] == [chapter_a.name]


@pytest.mark.asyncio
async def test_get_chapter(async_client: AsyncClient, chapter_a: Chapter):
    found = await async_client.get(f"{CHAPTERS_URL}/{chapter_a.id}")
    missing = await async_client.get(f"{CHAPTERS_URL}/{uuid4()}")

    assert found.status_code == 200
    assert found.json()["executive_team"] == []
    assert missing.status_code == 404
    assert missing.json()["code"] == "CHAPTER_NOT_FOUND"


@pytest.mark.asyncio
async def test_stats_require_login(
    async_client: AsyncClient, chapter_a: Chapter, member_a: User, headers_for
):
    anonymous = await async_client.get(f"{CHAPTERS_URL}/{chapter_a.id}/stats")
    assert anonymous.status_code == 401

    response = await async_client.get(
        f"{CHAPTERS_URL}/{chapter_a.id}/stats", headers=headers_for(member_a)
    )
    assert response.status_code == 200
    assert response.json()["total_members"] == 1
    assert response.json()["active_members"] == 1


# ==================== Administration ====================


@pytest.mark.asyncio
async def test_create_chapter(async_client: AsyncClient, super_admin: User, headers_for, audit_entries):
    response = await async_client.post(
        f"{CHAPTERS_URL}/", json=_new_chapter(), headers=headers_for(super_admin)
    )

    assert response.status_code == 201
    assert response.json()["status"] == "active"
    assert response.json()["member_count"] == 0

    [entry] = await audit_entries(AuditAction.CHAPTER_CREATE)
    assert entry.resource_id == response.json()["id"]
    assert entry.status_code == 201

    duplicate = await async_client.post(
        f"{CHAPTERS_URL}/", json=_new_chapter(), headers=headers_for(super_admin)
    )
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_only_super_admin_creates_chapters(async_client: AsyncClient, admin_a: User, headers_for):
    response = await async_client.post(
        f"{CHAPTERS_URL}/", json=_new_chapter(), headers=headers_for(admin_a)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_executive_updates_own_chapter(
    async_client: AsyncClient, executive_a: User, chapter_a: Chapter, chapter_b: Chapter, headers_for
):
    own = await async_client.patch(
        f"{CHAPTERS_URL}/{chapter_a.id}",
        json={"description": "Weekly CTF nights"},
        headers=headers_for(executive_a),
    )
    assert own.status_code == 200
    assert own.json()["description"] == "Weekly CTF nights"

    other = await async_client.patch(
        f"{CHAPTERS_URL}/{chapter_b.id}",
        json={"description": "Hijacked"},
        headers=headers_for(executive_a),
    )
    assert other.status_code == 403
    assert other.json()["code"] == "CROSS_CHAPTER"


@pytest.mark.asyncio
async def test_status_change_needs_administrator(
    async_client: AsyncClient, executive_a: User, admin_a: User, chapter_a: Chapter, headers_for
):
    by_executive = await async_client.patch(
        f"{CHAPTERS_URL}/{chapter_a.id}",
        json={"status": "inactive"},
        headers=headers_for(executive_a),
    )
    assert by_executive.status_code == 403

    by_admin = await async_client.patch(
        f"{CHAPTERS_URL}/{chapter_a.id}",
        json={"status": "inactive"},
        headers=headers_for(admin_a),
    )
    assert by_admin.status_code == 200
    assert by_admin.json()["status"] == "inactive"


@pytest.mark.asyncio
async def test_rename_to_taken_name(
    async_client: AsyncClient, admin_a: User, chapter_a: Chapter, chapter_b: Chapter, headers_for
):
    response = await async_client.patch(
        f"{CHAPTERS_URL}/{chapter_a.id}",
        json={"name": chapter_b.name},
        headers=headers_for(admin_a),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_chapter_with_members(
    async_client: AsyncClient, super_admin: User, member_a: User, chapter_a: Chapter, headers_for
):
    response = await async_client.delete(
        f"{CHAPTERS_URL}/{chapter_a.id}", headers=headers_for(super_admin)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_empty_chapter(
    async_client: AsyncClient, super_admin: User, chapter_b: Chapter, headers_for, audit_entries
):
    response = await async_client.delete(
        f"{CHAPTERS_URL}/{chapter_b.id}", headers=headers_for(super_admin)
    )

    assert response.status_code == 200
    [entry] = await audit_entries(AuditAction.CHAPTER_DELETE)
    assert entry.risk_level == "CRITICAL"
    assert entry.requires_review is True


# ==================== Executive Roster ====================


@pytest.mark.asyncio
async def test_roster_add_and_remove(
    async_client: AsyncClient,
    admin_a: User,
    member_a: User,
    chapter_a: Chapter,
    make_user,
    headers_for,
    db_session,
):
    added = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives",
        json={"user_id": str(member_a.id), "position": "Technical Lead", "term": "2025-2026"},
        headers=headers_for(admin_a),
    )
    assert added.status_code == 200
    [entry] = added.json()["executive_team"]
    assert entry["position"] == "Technical Lead"
    assert entry["end_date"] is None

    await db_session.refresh(member_a)
    assert member_a.role == Role.EXECUTIVE
    assert member_a.executive_position == ExecutivePosition.TECHNICAL_LEAD
    assert member_a.executive_term == "2025-2026"

    other = await make_user("member.a2@threatcombat.com", chapter=chapter_a)
    occupied = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives",
        json={"user_id": str(other.id), "position": "Technical Lead", "term": "2025-2026"},
        headers=headers_for(admin_a),
    )
    assert occupied.status_code == 409
    await db_session.refresh(other)
    assert other.role == Role.MEMBER

    removed = await async_client.delete(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives/{entry['id']}",
        headers=headers_for(admin_a),
    )
    assert removed.status_code == 200
    assert removed.json()["executive_team"][0]["end_date"] is not None

    await db_session.refresh(member_a)
    assert member_a.role == Role.MEMBER
    assert member_a.executive_end_date is not None


@pytest.mark.asyncio
async def test_roster_refuses_administrators_and_self(
    async_client: AsyncClient, admin_a: User, executive_a: User, chapter_a: Chapter, headers_for
):
    administrator = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives",
        json={"user_id": str(admin_a.id), "position": "President", "term": "2025-2026"},
        headers=headers_for(executive_a),
    )
    assert administrator.status_code == 403
    assert administrator.json()["code"] == "INVALID_TARGET_ROLE"

    own_seat = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives",
        json={"user_id": str(executive_a.id), "position": "President", "term": "2025-2026"},
        headers=headers_for(executive_a),
    )
    assert own_seat.status_code == 403
    assert own_seat.json()["code"] == "SELF_MODIFICATION"


@pytest.mark.asyncio
async def test_roster_only_takes_chapter_members(
    async_client: AsyncClient, admin_a: User, member_b: User, chapter_a: Chapter, headers_for
):
    response = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives",
        json={"user_id": str(member_b.id), "position": "Secretary", "term": "2025-2026"},
        headers=headers_for(admin_a),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_roster_of_other_chapter(
    async_client: AsyncClient, executive_a: User, member_b: User, chapter_b: Chapter, headers_for
):
    response = await async_client.post(
        f"{CHAPTERS_URL}/{chapter_b.id}/executives",
        json={"user_id": str(member_b.id), "position": "Secretary", "term": "2025-2026"},
        headers=headers_for(executive_a),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "CROSS_CHAPTER"


@pytest.mark.asyncio
async def test_remove_unknown_roster_entry(
    async_client: AsyncClient, admin_a: User, chapter_a: Chapter, headers_for
):
    response = await async_client.delete(
        f"{CHAPTERS_URL}/{chapter_a.id}/executives/999", headers=headers_for(admin_a)
    )
    assert response.status_code == 404
