"""簡易認証 (AuthContext) とローカルストレージのテスト."""
import pytest

from gummy_store.auth_state import STORAGE_KEY, USERS_KEY, AuthContext, AuthState, Login, Logout, auth_reducer
from gummy_store.errors import DuplicateKeyError, StoreError, ValidationError
from gummy_store.kvstore import KeyValueStorage
from gummy_store.models import ShippingAddress, User


@pytest.fixture
def auth(storage) -> AuthContext:
    context = AuthContext(storage)
    context.start()
    return context


class TestKeyValueStorage:
    """KeyValueStorage のテスト."""

    def test_set_get_remove(self, storage) -> None:
        assert storage.get_item("key") is None
        storage.set_item("key", "value")
        assert storage.get_item("key") == "value"
        storage.remove_item("key")
        assert storage.get_item("key") is None

    def test_json_values(self, storage) -> None:
        storage.set_json("user", {"name": "花子"})
        assert storage.get_json("user") == {"name": "花子"}

    def test_values_survive_new_instance(self, storage) -> None:
        storage.set_item("key", "value")
        assert KeyValueStorage(storage.path).get_item("key") == "value"

    def test_broken_file(self, storage) -> None:
        storage.path.write_text("{broken", encoding="utf-8")
        with pytest.raises(StoreError):
            storage.get_item("key")

    def test_broken_json_value(self, storage) -> None:
        storage.set_item("key", "not json")
        with pytest.raises(StoreError):
            storage.get_json("key")


class TestAuthReducer:
    """auth_reducer のテスト."""

    def test_initial_state_is_loading(self) -> None:
        state = AuthState()
        assert state.loading is True
        assert state.is_authenticated is False

    def test_login_and_logout(self) -> None:
        user = User(id="u-1", name="花子", email="hanako@example.com")
        state = auth_reducer(AuthState(), Login(user))
        assert state.is_authenticated
        assert state.user == user
        assert state.loading is False

        state = auth_reducer(state, Logout())
        assert state.user is None
        assert not state.is_authenticated


class TestAuthContext:
    """AuthContext のテスト."""

    def test_start_without_session(self, auth) -> None:
        assert auth.user is None
        assert not auth.is_authenticated
        assert auth.state.loading is False

    def test_login_creates_user_from_email(self, auth, storage) -> None:
        assert auth.login("taro@example.com", "secret") is True
        assert auth.is_authenticated
        assert auth.user.name == "taro"
        assert auth.user.id.startswith("user-")
        assert storage.get_json(STORAGE_KEY)["email"] == "taro@example.com"
        assert [u["email"] for u in storage.get_json(USERS_KEY)] == ["taro@example.com"]

    def test_login_existing_user_reuses_record(self, auth) -> None:
        auth.login("taro@example.com", "secret")
        first_id = auth.user.id
        auth.logout()
        auth.login("taro@example.com", "another")
        assert auth.user.id == first_id
        assert len(auth.registered_users()) == 1

    def test_login_requires_email(self, auth) -> None:
        with pytest.raises(ValidationError):
            auth.login("  ", "secret")

    def test_session_is_restored_on_start(self, auth, storage) -> None:
        auth.login("taro@example.com", "secret")
        restored = AuthContext(storage)
        restored.start()
        assert restored.is_authenticated
        assert restored.user.email == "taro@example.com"

    def test_logout_clears_session(self, auth, storage) -> None:
        auth.login("taro@example.com", "secret")
        auth.logout()
        assert not auth.is_authenticated
        assert storage.get_item(STORAGE_KEY) is None

        restored = AuthContext(storage)
        restored.start()
        assert not restored.is_authenticated

    def test_register(self, auth) -> None:
        address = ShippingAddress("150-0001", "東京都", "渋谷区", "1-2-3")
        assert auth.register("山田花子", "hanako@example.com", phone="090", address=address) is True
        assert auth.user.name == "山田花子"
        assert auth.user.address == address

    def test_register_duplicate_email(self, auth) -> None:
        assert auth.register("花子", "hanako@example.com") is True
        auth.logout()
        assert auth.register("別の花子", " hanako@example.com ") is False
        assert not auth.is_authenticated
        assert len(auth.registered_users()) == 1

    def test_update_user(self, auth, storage) -> None:
        auth.register("花子", "hanako@example.com")
        updated = auth.update_user(phone="080-0000-0000")
        assert updated.phone == "080-0000-0000"
        assert auth.user.phone == "080-0000-0000"
        assert auth.registered_users()[0].phone == "080-0000-0000"
        assert storage.get_json(STORAGE_KEY)["phone"] == "080-0000-0000"

    def test_update_user_without_login(self, auth) -> None:
        assert auth.update_user(name="誰か") is None

    def test_update_user_rejects_unknown_field(self, auth) -> None:
        auth.register("花子", "hanako@example.com")
        with pytest.raises(ValidationError):
            auth.update_user(id="other")

    def test_update_user_rejects_taken_email(self, auth) -> None:
        auth.register("太郎", "taro@example.com")
        auth.logout()
        auth.register("花子", "hanako@example.com")
        with pytest.raises(DuplicateKeyError):
            auth.update_user(email="taro@example.com")
        assert auth.user.email == "hanako@example.com"

    def test_update_user_rejects_empty_email_and_name(self, auth) -> None:
        auth.register("花子", "hanako@example.com")
        with pytest.raises(ValidationError) as excinfo:
            auth.update_user(email="  ")
        assert "email" in excinfo.value.errors
        with pytest.raises(ValidationError):
            auth.update_user(name="")
        assert auth.user.email == "hanako@example.com"
        assert auth.registered_users()[0].name == "花子"

    def test_update_user_strips_email(self, auth) -> None:
        auth.register("花子", "hanako@example.com")
        auth.update_user(email=" hanako2@example.com ")
        assert auth.user.email == "hanako2@example.com"

    def test_update_user_accepts_address_dict(self, auth, storage) -> None:
        auth.register("花子", "hanako@example.com")
        auth.update_user(address={
            "postal_code": "150-0001",
            "prefecture": "東京都",
            "city": "渋谷区",
            "address": "神宮前1-2-3",
        })
        assert auth.user.address == ShippingAddress("150-0001", "東京都", "渋谷区", "神宮前1-2-3")
        assert storage.get_json(STORAGE_KEY)["address"]["city"] == "渋谷区"

    def test_update_user_rejects_invalid_address(self, auth) -> None:
        auth.register("花子", "hanako@example.com")
        with pytest.raises(ValidationError) as excinfo:
            auth.update_user(address="東京都渋谷区")
        assert "address" in excinfo.value.errors
        assert auth.user.address is None

    def test_broken_storage_on_start(self, storage) -> None:
        storage.path.write_text("{broken", encoding="utf-8")
        context = AuthContext(storage)
        context.start()
        assert not context.is_authenticated
        assert context.state.loading is False

    def test_login_fails_on_broken_storage(self, storage) -> None:
        storage.path.write_text("{broken", encoding="utf-8")
        context = AuthContext(storage)
        assert context.login("taro@example.com", "secret") is False
        assert not context.is_authenticated
