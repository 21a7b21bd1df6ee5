"""
Accept/Complete flow tests.
"""

from datetime import timedelta

import pytest

from onboarding.core.errors import DependencyFailed
from onboarding.models import Invitation, Profile, Team, TeamMember
from onboarding.models.enums import AccessLevel, AppRole, ProfileStatus
from onboarding.models.invitation_activity import InvitationActivity
from onboarding.services.roles import RoleAssigner
from onboarding.services.teams import TeamMembershipAssigner
from onboarding.services.utils.emails import ARCHIVED_DOMAIN


def accept_body(invitation, **overrides):
    body = {"token": invitation.invite_code, "full_name": "Ana Ruiz", "password": "Sup3rSecret!"}
    body.update(overrides)
    return body


class TestAcceptInvitation:
    """POST /api/invitations/accept, happy paths"""

    @pytest.mark.asyncio
    async def test_accept_with_team(self, async_client, seed, store, identity):
        office = await seed.office()
        team = await seed.team(office, name="Closers")
        invitation = await seed.invitation("ana@x.com", office, role=AppRole.team_leader, team=team)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        user_id = data["user_id"]

        [credential] = identity.by_email("ana@x.com")
        assert str(credential.id) == user_id
        assert identity.passwords[credential.id] == "Sup3rSecret!"

        profile = await store.one(Profile, Profile.id == credential.id)
        assert profile.status == "active"
        assert profile.full_name == "Ana Ruiz"
        assert profile.office_id == office.id
        assert profile.primary_team_id == team.id
        membership = await store.one(TeamMember, TeamMember.user_id == credential.id)
        assert membership.team_id == team.id
        assert membership.access_level == AccessLevel.admin
        assert await store.roles(credential.id) == [AppRole.team_leader]

        refreshed = await store.one(Invitation, Invitation.id == invitation.id)
        assert refreshed.status == "accepted"
        assert refreshed.accepted_at is not None
        actions = await store.audit_actions()
        assert "account_created" in actions
        assert "user_joined_team" in actions
        assert "invitation_accepted" in actions
        activity = await store.all(InvitationActivity, InvitationActivity.invitation_id == invitation.id)
        assert [a.activity_type for a in activity] == ["accepted"]

    @pytest.mark.asyncio
    async def test_accept_without_team_creates_personal_team(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office, role=AppRole.salesperson)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        [credential] = identity.by_email("ana@x.com")
        team = await store.one(Team, Team.created_by == credential.id)
        assert team.is_personal_team is True
        assert team.name == "Ana Ruiz - Personal"
        assert team.office_id == office.id
        profile = await store.one(Profile, Profile.id == credential.id)
        assert profile.primary_team_id == team.id
        membership = await store.one(TeamMember, TeamMember.user_id == credential.id)
        assert membership.access_level == AccessLevel.edit

    @pytest.mark.asyncio
    async def test_legacy_office_column(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office, legacy_office_column=True)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        [credential] = identity.by_email("ana@x.com")
        assert (await store.one(Profile, Profile.id == credential.id)).office_id == office.id

    @pytest.mark.asyncio
    async def test_accept_by_invitation_id(self, async_client, seed):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post(
            "/api/invitations/accept",
            json={"invitation_id": str(invitation.id), "full_name": "Ana", "password": "Sup3rSecret!"},
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_optional_profile_fields(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post(
            "/api/invitations/accept",
            json=accept_body(invitation, mobile="+34 600 000 000", birthday="1990-04-02"),
        )

        assert response.status_code == 200
        [credential] = identity.by_email("ana@x.com")
        profile = await store.one(Profile, Profile.id == credential.id)
        assert profile.mobile == "+34 600 000 000"
        assert profile.birthday.isoformat() == "1990-04-02"


class TestAcceptRejections:
    """Requests refused before any write"""

    @pytest.mark.asyncio
    async def test_missing_fields(self, async_client, seed):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post(
            "/api/invitations/accept", json={"token": invitation.invite_code, "full_name": "  "}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "missing_fields"
        assert sorted(response.json()["details"]["missing"]) == ["full_name", "password"]

    @pytest.mark.asyncio
    async def test_expired_invitation_has_no_side_effects(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office, expires_in=timedelta(hours=-1))

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 400
        assert response.json()["code"] == "expired"
        assert identity.users == {}
        assert await store.all(Profile) == []
        assert await store.all(TeamMember) == []
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_token_cannot_be_used_twice(self, async_client, seed, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        first = await async_client.post("/api/invitations/accept", json=accept_body(invitation))
        second = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "already_used"
        assert len(identity.by_email("ana@x.com")) == 1

    @pytest.mark.asyncio
    async def test_unknown_token(self, async_client):
        response = await async_client.post(
            "/api/invitations/accept", json={"token": "missing", "full_name": "Ana", "password": "x1234567"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_team_moved_to_other_office(self, async_client, seed, identity):
        office = await seed.office()
        foreign_team = await seed.team(await seed.office("Uptown"))
        invitation = await seed.invitation("ana@x.com", office, team=foreign_team)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_team"
        assert identity.users == {}

    @pytest.mark.asyncio
    async def test_fully_configured_account_is_user_exists(self, async_client, seed, store):
        office = await seed.office()
        team = await seed.team(office)
        await seed.user("ana@x.com", office, AppRole.assistant, team)
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 409
        assert response.json()["code"] == "user_exists"
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "pending"
        assert "accept_invitation_failed" in await store.audit_actions()

    @pytest.mark.asyncio
    async def test_active_profile_without_credential_blocks(self, async_client, seed, identity):
        office = await seed.office()
        await seed.user("ana@x.com", office, credential=False)
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 409
        assert response.json()["code"] == "user_exists"
        assert identity.users == {}

    @pytest.mark.asyncio
    async def test_identity_store_failure(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)
        identity.failing.add("create")

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 502
        assert response.json()["code"] == "auth_creation_failed"
        assert await store.all(Profile) == []
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "pending"


class TestStaleProfiles:
    """Profiles left behind by an earlier account for the same email"""

    @pytest.mark.asyncio
    async def test_inactive_profile_is_archived(self, async_client, seed, store, identity):
        office = await seed.office()
        stale = await seed.user("ana@x.com", office, status=ProfileStatus.inactive, credential=False)
        invitation = await seed.invitation("ana@x.com", office)

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        archived = await store.one(Profile, Profile.id == stale.id)
        assert archived.status == "archived"
        assert archived.original_email == "ana@x.com"
        assert archived.email.endswith(f"@{ARCHIVED_DOMAIN}")
        assert archived.archived_at is not None
        [credential] = identity.by_email("ana@x.com")
        assert credential.id != stale.id
        assert "profile_archived" in await store.audit_actions()


class TestPartialFailures:
    """Steps that fail after the credential exists"""

    @pytest.mark.asyncio
    async def test_team_failure_returns_202_then_retry_resumes(
        self, async_client, seed, store, identity, monkeypatch
    ):
        office = await seed.office()
        team = await seed.team(office, name="Closers")
        invitation = await seed.invitation("ana@x.com", office, team=team)

        async def lost_write(self, user_id, team_id, access_level):
            raise DependencyFailed("membership_not_persisted", "Team membership was not found after insert")

        monkeypatch.setattr(TeamMembershipAssigner, "add_member", lost_write)
        first = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert first.status_code == 202
        body = first.json()
        assert body["success"] is False
        assert body["code"] == "team_assignment_failed"
        assert body["details"]["team_name"] == "Closers"
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "pending"
        actions = await store.audit_actions()
        assert "team_assignment_failed" in actions
        assert "profile_verification_failed" in actions

        monkeypatch.undo()
        second = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert second.status_code == 200
        assert second.json()["user_id"] == body["user_id"]
        assert len(identity.by_email("ana@x.com")) == 1
        assert len(await store.all(Profile)) == 1
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "accepted"

    @pytest.mark.asyncio
    async def test_team_failure_repaired_by_admin(self, async_client, seed, store, current_user, monkeypatch):
        office = await seed.office()
        team = await seed.team(office, name="Closers")
        admin = await seed.admin(office)
        invitation = await seed.invitation("ana@x.com", office, team=team)

        async def lost_write(self, user_id, team_id, access_level):
            raise DependencyFailed("membership_not_persisted", "Team membership was not found after insert")

        monkeypatch.setattr(TeamMembershipAssigner, "add_member", lost_write)
        accepted = await async_client.post("/api/invitations/accept", json=accept_body(invitation))
        user_id = accepted.json()["user_id"]
        monkeypatch.undo()

        current_user.login(admin)
        repaired = await async_client.post(
            "/api/admin/repair-user",
            json={"user_id": user_id, "office_id": str(office.id), "role": "assistant", "team_id": str(team.id)},
        )

        assert repaired.status_code == 200
        data = repaired.json()
        assert data["success"] is True
        assert data["verification"] == "complete"
        assert "team_membership" in data["repaired_fields"]
        assert "primary_team_id" in data["repaired_fields"]
        assert "invitation_accepted" in data["repaired_fields"]
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "accepted"

    @pytest.mark.asyncio
    async def test_role_failure_is_a_warning(self, async_client, seed, store, identity, monkeypatch):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office, role=AppRole.salesperson)

        async def broken_grant(self, user_id, role, granted_by):
            raise RuntimeError("user_roles unavailable")

        monkeypatch.setattr(RoleAssigner, "grant", broken_grant)
        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert len(data["warnings"]) == 1
        assert "salesperson" in data["warnings"][0]
        [credential] = identity.by_email("ana@x.com")
        assert await store.roles(credential.id) == []
        assert "role_assignment_failed" in await store.audit_actions()
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "accepted"

    @pytest.mark.asyncio
    async def test_credential_left_by_earlier_attempt_is_reused(self, async_client, seed, store, identity):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)
        leftover = identity.add("ana@x.com", password="old-password")

        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 200
        assert response.json()["user_id"] == str(leftover.id)
        assert identity.passwords[leftover.id] == "Sup3rSecret!"
        assert len(identity.users) == 1
        assert (await store.one(Profile, Profile.id == leftover.id)).status == "active"

    @pytest.mark.asyncio
    async def test_unverified_profile_is_reported(self, async_client, seed, store, monkeypatch):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        async def silently_dropped(self, user_id, team_id):
            return None

        monkeypatch.setattr(TeamMembershipAssigner, "set_primary_team", silently_dropped)
        response = await async_client.post("/api/invitations/accept", json=accept_body(invitation))

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "profile_incomplete"
        assert body["details"]["missing"] == ["primary_team_id"]
        assert (await store.one(Invitation, Invitation.id == invitation.id)).status == "pending"
