"""
Course Tests

The training catalogue, instructor ownership and member enrollment.
"""

import pytest
from httpx import AsyncClient

from threatcombat.api.access.audit import AuditAction
from threatcombat.api.db.models import MembershipStatus, User


COURSES_URL = "/api/v1/courses"


def _course(**overrides) -> dict:
    data = {
        "title": "Incident Response Foundations",
        "description": "Triage, containment and reporting for first responders.",
        "category": "Incident Response",
        "level": "beginner",
        "duration_hours": 12,
        "price": "49.99",
        "status": "published",
    }
    data.update(overrides)
    return data


async def _create(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post(f"{COURSES_URL}/", json=_course(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_partner_publishes_a_course(
    async_client: AsyncClient, partner: User, headers_for, audit_entries
):
    course = await _create(async_client, headers_for(partner))

    assert course["instructor_id"] == str(partner.id)
    assert course["enrollment_count"] == 0

    catalogue = await async_client.get(
        f"{COURSES_URL}/", params={"category": "Incident Response", "level": "beginner"}
    )
    assert [c["id"] for c in catalogue.json()["courses"]] == [course["id"]]

    [entry] = await audit_entries(AuditAction.COURSE_CREATE)
    assert entry.resource_id == course["id"]


@pytest.mark.asyncio
async def test_drafts_stay_out_of_the_catalogue(
    async_client: AsyncClient, admin_a: User, headers_for
):
    draft = await _create(async_client, headers_for(admin_a), status="draft")

    assert (await async_client.get(f"{COURSES_URL}/")).json()["count"] == 0
    assert (await async_client.get(f"{COURSES_URL}/{draft['id']}")).status_code == 404

    managed = await async_client.get(f"{COURSES_URL}/manage", headers=headers_for(admin_a))
    assert [c["id"] for c in managed.json()["courses"]] == [draft["id"]]


@pytest.mark.asyncio
async def test_executives_cannot_manage_courses(async_client: AsyncClient, executive_a: User, headers_for):
    response = await async_client.post(f"{COURSES_URL}/", json=_course(), headers=headers_for(executive_a))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_only_the_instructor_edits(
    async_client: AsyncClient, partner: User, admin_a: User, super_admin: User, headers_for
):
    course = await _create(async_client, headers_for(partner))

    refused = await async_client.patch(
        f"{COURSES_URL}/{course['id']}", json={"duration_hours": 20}, headers=headers_for(admin_a)
    )
    assert refused.status_code == 403
    assert refused.json()["code"] == "INSUFFICIENT_ROLE"

    by_instructor = await async_client.patch(
        f"{COURSES_URL}/{course['id']}", json={"duration_hours": 20}, headers=headers_for(partner)
    )
    assert by_instructor.json()["duration_hours"] == 20

    archived = await async_client.patch(
        f"{COURSES_URL}/{course['id']}", json={"status": "archived"}, headers=headers_for(super_admin)
    )
    assert archived.json()["status"] == "archived"

    deleted = await async_client.delete(f"{COURSES_URL}/{course['id']}", headers=headers_for(super_admin))
    assert deleted.status_code == 200


@pytest.mark.asyncio
async def test_enrollment(
    async_client: AsyncClient,
    partner: User,
    member_a: User,
    member_b: User,
    make_user,
    chapter_a,
    headers_for,
    audit_entries,
):
    course = await _create(async_client, headers_for(partner), max_enrollment=1)

    enrolled = await async_client.post(
        f"{COURSES_URL}/{course['id']}/enroll", headers=headers_for(member_a)
    )
    assert enrolled.status_code == 200
    assert enrolled.json()["enrollment_count"] == 1

    twice = await async_client.post(f"{COURSES_URL}/{course['id']}/enroll", headers=headers_for(member_a))
    assert twice.status_code == 409

    full = await async_client.post(f"{COURSES_URL}/{course['id']}/enroll", headers=headers_for(member_b))
    assert full.status_code == 409
    assert full.json()["details"] == {"max_enrollment": 1}

    suspended = await make_user(
        "suspended.a@threatcombat.com", chapter=chapter_a, membership_status=MembershipStatus.SUSPENDED
    )
    refused = await async_client.post(
        f"{COURSES_URL}/{course['id']}/enroll", headers=headers_for(suspended)
    )
    assert refused.status_code == 403

    entries = await audit_entries(AuditAction.COURSE_ENROLL)
    assert [e.status_code for e in entries] == [200, 409, 409]


@pytest.mark.asyncio
async def test_invalid_category(async_client: AsyncClient, partner: User, headers_for):
    response = await async_client.post(
        f"{COURSES_URL}/", json=_course(category="Basket Weaving"), headers=headers_for(partner)
    )
    assert response.status_code == 400
