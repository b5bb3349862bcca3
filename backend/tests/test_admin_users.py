from __future__ import annotations

import pytest

from portal.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from portal.core.roles import Role
from portal.services import user_admin


# -------------------------
# Service level
# -------------------------
def test_suspend_revokes_sessions_and_blocks_login(db_session, auth_service, users, password):
    auth_service.login("student@example.com", password)
    auth_service.login("student@example.com", password)

    user, revoked = user_admin.suspend_user(
        db_session, auth_service, target_user_id=users["student"].id, acting_user_id=users["admin"].id
    )

    assert user.suspended is True
    assert revoked == 2
    assert auth_service.sessions.get_all_for_user(users["student"].id) == []


def test_admin_cannot_suspend_self(db_session, auth_service, users):
    with pytest.raises(ForbiddenError):
        user_admin.suspend_user(
            db_session, auth_service, target_user_id=users["admin"].id, acting_user_id=users["admin"].id
        )


@pytest.fixture
def second_admin(db_session, password_hash):
    from portal.models.user import User

    admin = User(email="admin2@example.com", name="Admin Two", password_hash=password_hash, role="admin")
    db_session.add(admin)
    db_session.commit()
    return admin


def _active_admin_ids(db_session) -> set[str]:
    from portal.services.users import lock_active_admins

    ids = {admin.id for admin in lock_active_admins(db_session)}
    db_session.rollback()
    return ids


def test_non_admin_actor_is_forbidden(db_session, auth_service, users):
    with pytest.raises(ForbiddenError):
        user_admin.suspend_user(
            db_session, auth_service, target_user_id=users["admin"].id, acting_user_id=users["teacher"].id
        )

    assert _active_admin_ids(db_session) == {users["admin"].id}


def test_second_admin_can_be_suspended(db_session, auth_service, users, second_admin):
    user, _ = user_admin.suspend_user(
        db_session, auth_service, target_user_id=second_admin.id, acting_user_id=users["admin"].id
    )

    assert user.suspended is True
    assert _active_admin_ids(db_session) == {users["admin"].id}


def test_suspended_admin_cannot_unsuspend_self(db_session, auth_service, users, second_admin):
    user_admin.suspend_user(
        db_session, auth_service, target_user_id=second_admin.id, acting_user_id=users["admin"].id
    )

    with pytest.raises(ForbiddenError):
        user_admin.unsuspend_user(db_session, target_user_id=second_admin.id, acting_user_id=second_admin.id)

    db_session.refresh(second_admin)
    assert second_admin.suspended is True


def test_suspended_admin_loses_every_admin_action(db_session, auth_service, users, second_admin):
    user_admin.suspend_user(
        db_session, auth_service, target_user_id=second_admin.id, acting_user_id=users["admin"].id
    )
    acting = {"acting_user_id": second_admin.id}

    with pytest.raises(ForbiddenError):
        user_admin.suspend_user(db_session, auth_service, target_user_id=users["admin"].id, **acting)
    with pytest.raises(ForbiddenError):
        user_admin.unsuspend_user(db_session, target_user_id=users["teacher"].id, **acting)
    with pytest.raises(ForbiddenError):
        user_admin.change_user_role(
            db_session, auth_service, target_user_id=users["teacher"].id, role=Role.ADMIN, **acting
        )
    with pytest.raises(ForbiddenError):
        user_admin.revoke_user_sessions(db_session, auth_service, target_user_id=users["admin"].id, **acting)
    with pytest.raises(ForbiddenError):
        user_admin.create_user_as_admin(
            auth_service, email="mole@example.com", password="Str0ng-Pass!", name="Mole", role=Role.ADMIN, **acting
        )

    assert _active_admin_ids(db_session) == {users["admin"].id}


def test_admins_suspending_each_other_leave_one_active(db_session, auth_service, users, second_admin):
    user_admin.suspend_user(
        db_session, auth_service, target_user_id=second_admin.id, acting_user_id=users["admin"].id
    )

    # The second request was authorized before the first committed.
    with pytest.raises(ForbiddenError):
        user_admin.suspend_user(
            db_session, auth_service, target_user_id=users["admin"].id, acting_user_id=second_admin.id
        )

    assert _active_admin_ids(db_session) == {users["admin"].id}


def test_demoted_admin_cannot_promote_self_back(db_session, auth_service, users, second_admin):
    user_admin.change_user_role(
        db_session,
        auth_service,
        target_user_id=second_admin.id,
        role=Role.TEACHER,
        acting_user_id=users["admin"].id,
    )

    with pytest.raises(ForbiddenError):
        user_admin.change_user_role(
            db_session,
            auth_service,
            target_user_id=second_admin.id,
            role=Role.ADMIN,
            acting_user_id=second_admin.id,
        )

    db_session.refresh(second_admin)
    assert second_admin.role == "teacher"


@pytest.mark.parametrize("action", ["unsuspend", "role"])
def test_admin_cannot_change_own_account(db_session, auth_service, users, action):
    admin_id = users["admin"].id

    with pytest.raises(ForbiddenError):
        if action == "unsuspend":
            user_admin.unsuspend_user(db_session, target_user_id=admin_id, acting_user_id=admin_id)
        else:
            user_admin.change_user_role(
                db_session, auth_service, target_user_id=admin_id, role=Role.TEACHER, acting_user_id=admin_id
            )

    assert _active_admin_ids(db_session) == {admin_id}


def test_suspend_twice_is_invalid_state(db_session, auth_service, users):
    kwargs = {"target_user_id": users["teacher"].id, "acting_user_id": users["admin"].id}
    user_admin.suspend_user(db_session, auth_service, **kwargs)

    with pytest.raises(InvalidStateError):
        user_admin.suspend_user(db_session, auth_service, **kwargs)


def test_unsuspend_restores_login(db_session, auth_service, users, password):
    user_admin.suspend_user(
        db_session, auth_service, target_user_id=users["teacher"].id, acting_user_id=users["admin"].id
    )

    user = user_admin.unsuspend_user(db_session, target_user_id=users["teacher"].id, acting_user_id=users["admin"].id)

    assert user.suspended is False
    assert auth_service.login("teacher@example.com", password).user.id == users["teacher"].id


def test_unsuspend_active_user_is_invalid_state(db_session, users):
    with pytest.raises(InvalidStateError):
        user_admin.unsuspend_user(db_session, target_user_id=users["teacher"].id, acting_user_id=users["admin"].id)


def test_unknown_target_is_not_found(db_session, auth_service, users):
    with pytest.raises(NotFoundError):
        user_admin.suspend_user(db_session, auth_service, target_user_id="missing", acting_user_id=users["admin"].id)


def test_role_change_revokes_sessions(db_session, auth_service, users, password):
    auth_service.login("student@example.com", password)

    user, revoked = user_admin.change_user_role(
        db_session,
        auth_service,
        target_user_id=users["student"].id,
        role=Role.TEACHER,
        acting_user_id=users["admin"].id,
    )

    assert user.role is Role.TEACHER
    assert revoked == 1


def test_role_change_to_same_role_is_a_no_op(db_session, auth_service, users, password):
    auth_service.login("student@example.com", password)

    user, revoked = user_admin.change_user_role(
        db_session,
        auth_service,
        target_user_id=users["student"].id,
        role=Role.STUDENT,
        acting_user_id=users["admin"].id,
    )

    assert user.role is Role.STUDENT
    assert revoked == 0


# -------------------------
# HTTP
# -------------------------
def test_admin_routes_require_admin_role(client, users, login_as):
    login_as("teacher@example.com")

    res = client.post(f"/admin/users/{users['student'].id}/suspend")

    assert res.status_code == 403
    assert res.json()["error"] == "FORBIDDEN"


def test_admin_routes_require_authentication(client, users):
    client.cookies.clear()
    assert client.post(f"/admin/users/{users['student'].id}/suspend").status_code == 401


def test_admin_suspend_over_http_ends_student_sessions(client, client_for, users, login_as, password):
    with client_for("student@example.com") as student:
        login_as("admin@example.com")

        res = client.post(f"/admin/users/{users['student'].id}/suspend")
        assert res.status_code == 200
        assert res.json()["user"]["suspended"] is True
        assert res.json()["revoked_sessions"] == 1

        assert student.post("/auth/refresh").status_code == 401
        login = student.post("/auth/login", json={"email": "student@example.com", "password": password})
        assert login.status_code == 401
        assert login.json()["error"] == "ACCOUNT_SUSPENDED"


def test_admin_self_suspend_is_403(client, users, login_as):
    login_as("admin@example.com")
    res = client.post(f"/admin/users/{users['admin'].id}/suspend")
    assert res.status_code == 403


def test_admin_can_create_admin(client, users, login_as):
    login_as("admin@example.com")

    res = client.post(
        "/admin/users",
        json={"email": "dean@example.com", "name": "Dean", "password": "Str0ng-Pass!", "role": "admin"},
    )

    assert res.status_code == 201
    assert res.json()["role"] == "admin"


def test_admin_role_change_applies_on_next_refresh(client, client_for, users, login_as):
    with client_for("student@example.com") as student:
        login_as("admin@example.com")

        res = client.patch(f"/admin/users/{users['student'].id}/role", json={"role": "teacher"})
        assert res.status_code == 200
        assert res.json()["user"]["role"] == "teacher"

        # Sessions were revoked by the role change: the student has to sign in again.
        assert student.post("/auth/refresh").status_code == 401


def test_admin_cannot_demote_self_over_http(client, users, login_as):
    login_as("admin@example.com")

    res = client.patch(f"/admin/users/{users['admin'].id}/role", json={"role": "teacher"})

    assert res.status_code == 403
    assert res.json()["error"] == "FORBIDDEN"


def test_suspended_admin_with_live_token_cannot_unsuspend_self(
    client, client_for, users, login_as, password, password_hash, db_session
):
    from portal.models.user import User

    other = User(email="admin2@example.com", name="Admin Two", password_hash=password_hash, role="admin")
    db_session.add(other)
    db_session.commit()

    with client_for("admin2@example.com") as other_admin:
        login_as("admin@example.com")
        assert client.post(f"/admin/users/{other.id}/suspend").status_code == 200

        # The access token still carries the admin role until it expires.
        res = other_admin.post(f"/admin/users/{other.id}/unsuspend")
        assert res.status_code == 403
        assert res.json()["error"] == "FORBIDDEN"

        res = other_admin.patch(f"/admin/users/{users['admin'].id}/role", json={"role": "student"})
        assert res.status_code == 403

        login = other_admin.post("/auth/login", json={"email": "admin2@example.com", "password": password})
        assert login.status_code == 401
        assert login.json()["error"] == "ACCOUNT_SUSPENDED"


def test_admin_revokes_user_sessions(client, client_for, users, login_as):
    with client_for("teacher@example.com") as teacher:
        login_as("admin@example.com")

        res = client.delete(f"/admin/users/{users['teacher'].id}/sessions")
        assert res.json() == {"revoked": 1}
        assert teacher.post("/auth/refresh").status_code == 401
