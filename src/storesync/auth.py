"""Auth/User synchronizer: the signed-in customer and their sub-collections."""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from .errors import (
    AccountExistsError,
    CacheUnavailableError,
    CredentialsRejectedError,
    InvalidRecordError,
    NotAuthenticatedError,
    RemoteStoreError,
)
from .local_cache import (
    ADDRESSES_KEY,
    LEGACY_ORDERS_KEY,
    USER_KEY,
    WISHLIST_KEY,
    LocalCache,
    read_json,
)
from .models import (
    Address,
    OrderSummary,
    User,
    UserAccount,
    _generate_id,
)
from .orders import OrderSynchronizer
from .outbox import Outbox, RemoteCaller
from .remote_client import USERS, ensure_success, user_endpoint
from .synchronizer import LoadOutcome, LoadSource, Synchronizer, parse_collection

logger = logging.getLogger(__name__)


class CredentialVerifier(Protocol):
    """Decides whether a login attempt may proceed."""

    def verify(self, email: str, password: str, account: UserAccount | None) -> bool:
        """
        Args:
            account: The account known for this email, or None if there is none.
        """
        ...


class OpenEnrollment:
    """Accepts every login. Storefront sessions carry no credentials."""

    def verify(self, email: str, password: str, account: UserAccount | None) -> bool:
        return True


class AuthSynchronizer(Synchronizer[UserAccount | None]):
    """
    Owns the signed-in user, their addresses and wishlist.

    Each account mutation sends the full bundled user payload (not a
    patch) to the Remote Store and writes the user, address and wishlist
    cache entries. Order history is a view over the order store.
    """

    name = "user"
    cache_key = USER_KEY

    def __init__(
        self,
        client: RemoteCaller,
        cache: LocalCache,
        order_history: OrderSynchronizer,
        outbox: Outbox | None = None,
        verifier: CredentialVerifier | None = None,
        allow_implicit_signup: bool = True,
    ):
        """
        Args:
            order_history: Order store the per-user history view is derived from.
            verifier: Credential check run on every login; defaults to OpenEnrollment.
            allow_implicit_signup: Whether logging in with an unknown email
                creates a local account.
        """
        super().__init__(client, cache, outbox)
        self.order_history = order_history
        self.verifier = verifier or OpenEnrollment()
        self.allow_implicit_signup = allow_implicit_signup
        self.user: User | None = None
        self.addresses: list[Address] = []
        self.wishlist: list[str] = []
        self.orders: list[OrderSummary] = []
        # Set while the Remote Store has not been asked about the signed-in
        # email; no account save is sent until it has
        self._unconfirmed = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def account(self) -> UserAccount | None:
        if self.user is None:
            return None
        return UserAccount(self.user, list(self.addresses), list(self.wishlist))

    # --- Session ---

    def login(self, email: str, password: str) -> User:
        """
        Sign in, adopting the remote account when one exists.

        An unknown email creates a fresh local account when implicit
        signup is allowed; any order history already known for the email
        is kept. When the Remote Store cannot be reached, the cached
        session for the email is restored (or a blank local one started)
        and nothing is saved remotely until the account is confirmed.

        Raises:
            CredentialsRejectedError: If the verifier refuses the login, or
                the email is unknown and implicit signup is disabled.
        """
        try:
            remote = self._fetch_account(email)
        except RemoteStoreError as e:
            logger.error("Error looking up user %s during login: %s", email, e)
            return self._login_offline(email, password)

        if not self.verifier.verify(email, password, remote):
            raise CredentialsRejectedError(email)

        self._unconfirmed = False
        if remote is not None:
            self._adopt(remote)
            self._persist()
            logger.info("Signed in %s", email)
            return remote.user

        if not self.allow_implicit_signup:
            raise CredentialsRejectedError(email, "no account for this email")

        self._adopt(UserAccount(User.create(email)))
        logger.info("Signed in %s with a new local account", email)
        self._sync()
        return self.user

    def _login_offline(self, email: str, password: str) -> User:
        cached = self._read_cached()
        known = cached if cached is not None and cached.user.email == email else None
        if not self.verifier.verify(email, password, known):
            raise CredentialsRejectedError(email)
        if known is None:
            if not self.allow_implicit_signup:
                raise CredentialsRejectedError(email, "remote store unreachable")
            known = UserAccount(User.create(email))

        self._adopt(known)
        self._unconfirmed = True
        self._persist()
        logger.warning("Signed in %s offline; account changes stay local for now", email)
        return self.user

    def register(self, email: str, password: str, first_name: str, last_name: str) -> User:
        """
        Create a new account.

        Any existing trace of the email (remote record, cached session
        record, or order history) stops the registration before anything
        changes.

        Raises:
            AccountExistsError: If the email already has an account.
        """
        try:
            if self._fetch_account(email) is not None:
                raise AccountExistsError(email)
        except RemoteStoreError as e:
            logger.warning("Could not check remote store for %s, continuing: %s", email, e)

        cached = self._cached_user()
        if cached is not None and cached.email == email:
            raise AccountExistsError(email)
        if self.order_history.has_history_for(email):
            raise AccountExistsError(email)

        # Nothing from a previous session may leak onto the new account
        self._remove_cache(ADDRESSES_KEY, WISHLIST_KEY, LEGACY_ORDERS_KEY)
        self.user = User.create(email, first_name, last_name)
        self.addresses = []
        self.wishlist = []
        self.orders = []
        self._unconfirmed = False
        logger.info("Registered %s", email)
        self._sync()
        return self.user

    def logout(self) -> None:
        """Forget the session locally. Nothing is revoked remotely."""
        self.user = None
        self._unconfirmed = False
        self.addresses = []
        self.wishlist = []
        self.orders = []
        self._remove_cache(USER_KEY, ADDRESSES_KEY, WISHLIST_KEY, LEGACY_ORDERS_KEY)

    def refresh_orders(self) -> list[OrderSummary]:
        """Recompute the signed-in user's order history from the order store."""
        self.orders = self.order_history.history_for(self.user.email) if self.user else []
        return self.orders

    # --- Account mutations ---

    def update_profile(self, changes: Mapping[str, Any]) -> User:
        """
        Raises:
            NotAuthenticatedError: If nobody is signed in.
            InvalidRecordError: If the changes touch the email or ID.
        """
        user = self._require_user("update profile")
        merged = user.to_dict()
        merged.update(changes)
        if merged["email"] != user.email or merged["id"] != user.id:
            raise InvalidRecordError("user", "email and id cannot be changed")
        self.user = User.from_dict(merged)
        self._sync()
        return self.user

    def add_address(self, address: Mapping[str, Any]) -> Address:
        self._require_user("add address")
        data = dict(address)
        data["id"] = _generate_id()
        new_address = Address.from_dict(data)
        self.addresses.append(new_address)
        self._sync()
        return new_address

    def update_address(self, address_id: str, changes: Mapping[str, Any]) -> Address:
        """
        Raises:
            NotAuthenticatedError: If nobody is signed in.
            InvalidRecordError: If no address has this ID or the result is invalid.
        """
        self._require_user("update address")
        for i, existing in enumerate(self.addresses):
            if existing.id == address_id:
                merged = existing.to_dict()
                merged.update(changes)
                merged["id"] = address_id
                updated = Address.from_dict(merged)
                self.addresses[i] = updated
                self._sync()
                return updated
        raise InvalidRecordError("address", f"no address with id {address_id!r}")

    def delete_address(self, address_id: str) -> None:
        self._require_user("delete address")
        self.addresses = [a for a in self.addresses if a.id != address_id]
        self._sync()

    def add_to_wishlist(self, product_id: str) -> None:
        self._require_user("add to wishlist")
        if product_id in self.wishlist:
            return
        self.wishlist.append(product_id)
        self._sync()

    def remove_from_wishlist(self, product_id: str) -> None:
        self._require_user("remove from wishlist")
        self.wishlist = [p for p in self.wishlist if p != product_id]
        self._sync()

    def _require_user(self, operation: str) -> User:
        if self.user is None:
            raise NotAuthenticatedError(operation)
        return self.user

    def _sync(self) -> None:
        if self._unconfirmed and not self._confirm_account():
            self._persist()
            return
        self._propagate("POST", USERS, self.account.to_payload())
        self._persist()

    def _confirm_account(self) -> bool:
        """
        Ask the Remote Store about the signed-in email before saving to it.

        A remote account found now is merged with the local session:
        remote profile fields win unless set locally, and local addresses
        and wishlist entries are added to the remote ones.
        """
        try:
            remote = self._fetch_account(self.user.email)
        except RemoteStoreError as e:
            logger.warning("Account %s not confirmed, keeping changes local: %s",
                           self.user.email, e)
            return False

        if remote is not None:
            merged = remote.user.to_dict()
            for key, value in self.user.to_dict().items():
                if value and key not in ("id", "email", "joinedDate"):
                    merged[key] = value
            self.user = User.from_dict(merged)
            known = {a.id for a in remote.addresses}
            self.addresses = remote.addresses + [a for a in self.addresses if a.id not in known]
            self.wishlist = list(dict.fromkeys(remote.wishlist + self.wishlist))
            logger.info("Merged local session into remote account %s", self.user.email)
        self._unconfirmed = False
        return True

    # --- Remote and cache reads ---

    def _fetch_account(self, email: str) -> UserAccount | None:
        endpoint = user_endpoint(email)
        payload = ensure_success(self.client.call(endpoint), endpoint)
        record = payload.get("user")
        if not record:
            return None
        try:
            return UserAccount.from_payload(record)
        except InvalidRecordError as e:
            logger.error("Ignoring unreadable remote record for %s: %s", email, e)
            return None

    def _cached_user(self) -> User | None:
        try:
            data = read_json(self.cache, USER_KEY)
            return User.from_dict(data) if data is not None else None
        except (CacheUnavailableError, InvalidRecordError, ValueError) as e:
            logger.error("Error reading cached user: %s", e)
            return None

    def _cached_list(self, key: str, parser, kind: str) -> list:
        try:
            data = read_json(self.cache, key)
            return parse_collection(data, parser, kind) if data is not None else []
        except (CacheUnavailableError, InvalidRecordError, ValueError, TypeError) as e:
            logger.error("Error reading cached %s: %s", kind, e)
            return []

    # --- Session restore ---

    def load(self) -> LoadOutcome[UserAccount | None]:
        outcome = super().load()
        # A session restored without reaching the remote is unconfirmed
        self._unconfirmed = (
            self.user is not None
            and outcome.source is not LoadSource.REMOTE
            and outcome.error is not None
        )
        return outcome

    # --- Pipeline stages ---

    def _fetch_remote(self) -> UserAccount | None:
        # Only a restored session has anyone to refresh
        session = self._cached_user()
        if session is None:
            return None
        account = self._fetch_account(session.email)
        if account is None:
            return None
        # The session record stays authoritative for profile fields
        return UserAccount(session, account.addresses, account.wishlist)

    def _parse_cached(self, data: Any) -> UserAccount:
        return UserAccount(
            user=User.from_dict(data),
            addresses=self._cached_list(ADDRESSES_KEY, Address.from_dict, "addresses"),
            wishlist=self._cached_list(WISHLIST_KEY, _product_id, "wishlist"),
        )

    def _default(self) -> UserAccount | None:
        return None

    def _snapshot(self) -> dict[str, Any] | None:
        return self.user.to_dict() if self.user else None

    def _adopt(self, value: UserAccount | None) -> None:
        if value is None:
            self.user = None
            self.addresses = []
            self.wishlist = []
            self.orders = []
            return
        self.user = value.user
        self.addresses = list(value.addresses)
        self.wishlist = list(dict.fromkeys(value.wishlist))
        self.refresh_orders()

    def _persist(self) -> None:
        if self.user is None:
            self._remove_cache(USER_KEY, ADDRESSES_KEY, WISHLIST_KEY)
            return
        self._write_cache(USER_KEY, self._snapshot())
        self._write_cache(ADDRESSES_KEY, [a.to_dict() for a in self.addresses])
        self._write_cache(WISHLIST_KEY, list(self.wishlist))


def _product_id(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidRecordError("wishlist", "entries must be non-empty product IDs")
    return value
