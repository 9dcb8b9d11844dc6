"""
簡易認証の状態管理。

ログイン中のユーザーと登録済みユーザー一覧をローカルストレージに保存します。
デモ用のため、パスワードは受け取りますが照合しません。
"""
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

from .errors import DuplicateKeyError, StoreError, ValidationError
from .kvstore import KeyValueStorage
from .models import ShippingAddress, User, epoch_millis, now, random_suffix

logger = logging.getLogger(__name__)

# ローカルストレージのキー
STORAGE_KEY = 'gummy-store-auth'
USERS_KEY = 'gummy-store-users'

# update_user で変更できる項目
_EDITABLE_FIELDS = ('name', 'email', 'phone', 'address')


@dataclass(frozen=True)
class AuthState:
    user: Optional[User] = None
    is_authenticated: bool = False
    loading: bool = True


@dataclass(frozen=True)
class SetLoading:
    loading: bool


@dataclass(frozen=True)
class Login:
    user: User


@dataclass(frozen=True)
class Logout:
    pass


@dataclass(frozen=True)
class UpdateUser:
    user: User


AuthAction = Union[SetLoading, Login, Logout, UpdateUser]


def auth_reducer(state: AuthState, action: AuthAction) -> AuthState:
    if isinstance(action, SetLoading):
        return replace(state, loading=action.loading)
    if isinstance(action, Login):
        return AuthState(user=action.user, is_authenticated=True, loading=False)
    if isinstance(action, Logout):
        return AuthState(user=None, is_authenticated=False, loading=False)
    if isinstance(action, UpdateUser):
        return replace(state, user=action.user)
    return state


def _new_user_id() -> str:
    return f"user-{epoch_millis()}-{random_suffix()}"


def _clean_user_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """update_user の入力を検証し、保存できる形に整えます。"""
    cleaned = dict(fields)
    errors: Dict[str, str] = {}
    for name, message in (('name', "名前を入力してください"), ('email', "メールアドレスを入力してください")):
        if name not in cleaned:
            continue
        value = cleaned[name]
        if not isinstance(value, str) or not value.strip():
            errors[name] = message
        else:
            cleaned[name] = value.strip()

    if 'address' in cleaned:
        address = cleaned['address']
        if isinstance(address, dict):
            cleaned['address'] = ShippingAddress.from_dict(address)
        elif address is not None and not isinstance(address, ShippingAddress):
            errors['address'] = "住所の形式が不正です"

    if errors:
        raise ValidationError(errors)
    return cleaned


class AuthContext:
    """
    ログイン状態を保持するアプリケーションコンテキスト。

    start() でローカルストレージからセッションを復元します。
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._state = AuthState()

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def _dispatch(self, action: AuthAction) -> None:
        self._state = auth_reducer(self._state, action)

    # --- ローカルストレージ ---

    def _save_session(self, user: User) -> None:
        self.storage.set_json(STORAGE_KEY, user.to_dict())

    def registered_users(self) -> List[User]:
        """登録済みユーザーの一覧。"""
        data = self.storage.get_json(USERS_KEY) or []
        return [User.from_dict(u) for u in data]

    def _save_users(self, users: List[User]) -> None:
        self.storage.set_json(USERS_KEY, [u.to_dict() for u in users])

    # --- ライフサイクル ---

    def start(self) -> None:
        try:
            saved = self.storage.get_json(STORAGE_KEY)
        except StoreError:
            logger.exception("ユーザー情報の読み込みに失敗しました")
            self._dispatch(SetLoading(False))
            return
        if saved:
            self._dispatch(Login(User.from_dict(saved)))
        else:
            self._dispatch(SetLoading(False))

    def stop(self) -> None:
        self._state = AuthState()

    # --- 操作 ---

    def login(self, email: str, password: str) -> bool:
        """
        メールアドレスでログインします。

        未登録のメールアドレスの場合は、@より前を名前として自動登録します。
        ストレージの失敗時のみ False を返します。
        """
        email = email.strip()
        if not email:
            raise ValidationError({'email': "メールアドレスを入力してください"})

        self._dispatch(SetLoading(True))
        try:
            users = self.registered_users()
            user = next((u for u in users if u.email == email), None)
            if user is None:
                user = User(id=_new_user_id(), name=email.split('@')[0], email=email, created_at=now())
                self._save_users(users + [user])
                logger.info("新しいユーザーを自動登録しました: %s", user.id)
            self._save_session(user)
        except StoreError:
            logger.exception("ログインに失敗しました")
            self._dispatch(SetLoading(False))
            return False

        self._dispatch(Login(user))
        return True

    def register(
        self,
        name: str,
        email: str,
        phone: Optional[str] = None,
        address: Optional[ShippingAddress] = None,
    ) -> bool:
        """
        ユーザーを登録してログインします。

        Returns:
            メールアドレスが既に登録済み、またはストレージの失敗時は False。
        """
        errors = {}
        if not name or not name.strip():
            errors['name'] = "名前を入力してください"
        if not email or not email.strip():
            errors['email'] = "メールアドレスを入力してください"
        if errors:
            raise ValidationError(errors)
        email = email.strip()

        self._dispatch(SetLoading(True))
        try:
            users = self.registered_users()
            if any(u.email == email for u in users):
                self._dispatch(SetLoading(False))
                return False

            user = User(
                id=_new_user_id(),
                name=name.strip(),
                email=email,
                phone=phone,
                address=address,
                created_at=now(),
            )
            self._save_users(users + [user])
            self._save_session(user)
        except StoreError:
            logger.exception("ユーザー登録に失敗しました")
            self._dispatch(SetLoading(False))
            return False

        self._dispatch(Login(user))
        logger.info("ユーザーを登録しました: %s", user.id)
        return True

    def update_user(self, **fields: Any) -> Optional[User]:
        """
        ログイン中のユーザー情報を部分的に更新します。

        address は ShippingAddress または同じキーを持つ dict で指定します。

        Raises:
            ValidationError: 変更できない項目、空の名前・メールアドレス、不正な住所が指定された場合。
            DuplicateKeyError: 他のユーザーが使用中のメールアドレスに変更しようとした場合。
        """
        current = self._state.user
        if current is None:
            return None

        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError({name: "変更できない項目です" for name in sorted(unknown)})
        fields = _clean_user_fields(fields)

        users = self.registered_users()
        new_email = fields.get('email')
        if new_email and any(u.email == new_email and u.id != current.id for u in users):
            raise DuplicateKeyError(f"メールアドレス '{new_email}' は既に使用されています。")

        updated = replace(current, **fields)
        try:
            self._save_users([updated if u.id == current.id else u for u in users])
            self._save_session(updated)
        except StoreError:
            logger.exception("ユーザー情報の更新に失敗しました")
            raise

        self._dispatch(UpdateUser(updated))
        return updated

    def logout(self) -> None:
        self._dispatch(Logout())
        try:
            self.storage.remove_item(STORAGE_KEY)
        except StoreError:
            logger.exception("ユーザー情報の削除に失敗しました")
            raise
