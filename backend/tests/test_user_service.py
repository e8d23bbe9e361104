import pytest

from application.user_service import UserService
from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.user import UserRole
from infrastructure.database import configure_engine
from infrastructure.memory_store import InMemoryUserRepository
from infrastructure.sqlite_repo import SQLiteUserRepository


@pytest.fixture(params=["memory", "sqlite"])
def users(request, app_config, tmp_path):
    if request.param == "sqlite":
        configure_engine(tmp_path / "users.db")
        repository = SQLiteUserRepository()
    else:
        repository = InMemoryUserRepository()
    return UserService(app_config, repository)


def test_regular_user_gets_view_only_shadow(users):
    user = users.create_user("alice", "alice@plant.example", "secret1", first_name="Alice", last_name="Smith")
    shadow = users.get_view_only_account(user.id)

    assert user.id.startswith("user_")
    assert user.password_hash != "secret1"
    assert shadow.username == "alice.view"
    assert shadow.email == "alice.view@plant.example"
    assert shadow.role == UserRole.VIEW_ONLY
    assert shadow.is_view_only
    assert shadow.parent_user_id == user.id
    assert shadow.last_name == "Smith (View Only)"
    assert users.authenticate("alice.view", "secret1").id == shadow.id


def test_admin_has_no_shadow(users):
    admin = users.create_user("root", "root@plant.example", "secret1", role=UserRole.ADMIN)
    assert users.get_view_only_account(admin.id) is None
    assert users.list_users()["total"] == 1


def test_create_view_only_account_on_demand(users):
    admin = users.create_user("root", "root@plant.example", "secret1", role=UserRole.ADMIN)
    shadow = users.create_view_only_account(admin.id)
    assert shadow.username == "root.view"
    with pytest.raises(ConflictError):
        users.create_view_only_account(admin.id)
    with pytest.raises(ValidationError):
        users.create_view_only_account(shadow.id)


@pytest.mark.parametrize(
    "username,email,password,error",
    [
        ("", "a@b.c", "secret1", "Username is required"),
        ("bob", "not-an-email", "secret1", "valid email"),
        ("bob", "bob@b.c", "short", "at least 6 characters"),
    ],
)
def test_create_user_validation(users, username, email, password, error):
    with pytest.raises(ValidationError, match=error):
        users.create_user(username, email, password)


def test_duplicates_are_rejected_case_insensitively(users):
    users.create_user("alice", "alice@plant.example", "secret1")
    with pytest.raises(ConflictError, match="Username"):
        users.create_user("ALICE", "other@plant.example", "secret1")
    with pytest.raises(ConflictError, match="Email"):
        users.create_user("alice2", "Alice@Plant.Example", "secret1")


def test_list_users_filters_and_pages(users):
    users.create_user("alice", "alice@plant.example", "secret1")
    users.create_user("bob", "bob@plant.example", "secret1", role=UserRole.ADMIN)

    assert users.list_users()["total"] == 3
    assert [u.username for u in users.list_users(role=UserRole.ADMIN)["users"]] == ["bob"]
    assert users.list_users(role=UserRole.VIEW_ONLY)["total"] == 1
    assert users.list_users(search="ALI")["total"] == 2
    page = users.list_users(page=2, page_size=2)
    assert page["page"] == 2 and page["pageSize"] == 2
    assert len(page["users"]) == 1


def test_update_user(users):
    user = users.create_user("alice", "alice@plant.example", "secret1")
    updated = users.update_user(user.id, email="a.smith@plant.example", role="admin", first_name=None)
    assert updated.email == "a.smith@plant.example"
    assert updated.role == UserRole.ADMIN
    assert users.get_user(user.id).email == "a.smith@plant.example"
    with pytest.raises(ValidationError, match="password_hash"):
        users.update_user(user.id, password_hash="x")


def test_deactivation_cascades_to_shadow(users):
    user = users.create_user("alice", "alice@plant.example", "secret1")
    users.deactivate_user(user.id)
    assert not users.get_view_only_account(user.id).is_active
    assert users.authenticate("alice", "secret1") is None
    users.activate_user(user.id)
    assert users.get_view_only_account(user.id).is_active


def test_delete_removes_shadow(users):
    user = users.create_user("alice", "alice@plant.example", "secret1")
    users.delete_user(user.id)
    assert users.list_users()["total"] == 0
    with pytest.raises(NotFoundError):
        users.get_user(user.id)


def test_password_change_and_reset(users):
    user = users.create_user("alice", "alice@plant.example", "secret1")
    with pytest.raises(ValidationError, match="Current password is incorrect"):
        users.change_password(user.id, "wrong!", "another1")
    users.change_password(user.id, "secret1", "another1")
    assert users.authenticate("alice", "another1") is not None
    assert users.authenticate("alice", "secret1") is None

    users.reset_password(user.id, "temporary")
    reset = users.get_user(user.id)
    assert reset.require_password_change
    logged_in = users.authenticate("alice", "temporary")
    assert logged_in.last_login is not None


def test_seed_only_runs_on_empty_store(users):
    created = users.seed_initial_users()
    assert {u.username for u in created} == {"admin", "operator", "quality", "supervisor", "maintenance"}
    # four regular users each get a shadow account
    assert users.list_users()["total"] == 9
    assert users.seed_initial_users() == []
