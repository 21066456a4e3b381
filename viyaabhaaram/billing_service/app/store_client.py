import asyncio
import logging
from typing import Any, Dict, List, Optional

import pydantic
import requests

from . import config
from .errors import AuthFailure, DuplicateAccountError, RemoteCallFailure
from .schemas import Account, Item, StockLevel, Transaction

logger = logging.getLogger(__name__)


class StoreClient:
    """
    Asynchronous adapter over the store service's HTTP API.

    Each request runs in a worker thread, so every remote call is a suspension
    point for the event loop. Every call may fail; failures come back as
    RemoteCallFailure (or the more specific account errors), and every
    response is validated into a typed entity before it is returned.
    """

    def __init__(self, base_url: str = config.STORE_BASE, timeout: float = config.STORE_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # --- plumbing ---

    def _http(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            return requests.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            raise RemoteCallFailure(f"{method} {path} failed: {e}") from e

    async def _call(self, method: str, path: str, expected=(200, 201), **kwargs) -> Any:
        resp = await asyncio.to_thread(self._http, method, path, **kwargs)
        if resp.status_code not in expected:
            raise RemoteCallFailure(
                f"{method} {path}: expected HTTP {expected}, got {resp.status_code}, body={resp.text}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteCallFailure(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _parse(model, data):
        try:
            if isinstance(data, list):
                return [model.model_validate(d) for d in data]
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise RemoteCallFailure(f"Store returned a malformed {model.__name__}: {e}") from e

    # --- accounts ---

    async def lookup_account(self, email: Optional[str] = None, mobile: Optional[str] = None) -> Optional[Account]:
        """Returns the account matching either the email or the mobile, if any."""
        params = {k: v for k, v in {"email": email, "mobile": mobile}.items() if v}
        try:
            data = await self._call("GET", "/api/v1/accounts/lookup", params=params)
        except RemoteCallFailure as e:
            if e.status_code == 404:
                return None
            raise
        return self._parse(Account, data)

    async def create_account(self, business_name: str, email: str, mobile: str, password: str) -> Account:
        payload = {"business_name": business_name, "email": email, "mobile": mobile, "password": password}
        try:
            data = await self._call("POST", "/api/v1/accounts", json=payload)
        except RemoteCallFailure as e:
            if e.status_code == 409:
                raise DuplicateAccountError("User already exists") from e
            raise
        return self._parse(Account, data)

    async def authenticate(self, credential: str, password: str) -> Account:
        try:
            data = await self._call(
                "POST", "/api/v1/accounts/login", json={"credential": credential, "password": password}
            )
        except RemoteCallFailure as e:
            if e.status_code == 401:
                raise AuthFailure("Invalid Credentials") from e
            raise
        return self._parse(Account, data)

    async def update_password(self, email: str, old_password: str, new_password: str) -> None:
        try:
            await self._call(
                "PUT",
                f"/api/v1/accounts/{email}/password",
                json={"old_password": old_password, "new_password": new_password},
            )
        except RemoteCallFailure as e:
            if e.status_code == 401:
                raise AuthFailure("Invalid Credentials") from e
            raise

    # --- items ---

    async def list_items(self, owner: str) -> List[Item]:
        data = await self._call("GET", "/api/v1/items", params={"owner": owner})
        return self._parse(Item, data)

    async def create_item(self, payload: Dict[str, Any]) -> Item:
        data = await self._call("POST", "/api/v1/items", json=payload)
        return self._parse(Item, data)

    async def update_item(self, item_id: int, fields: Dict[str, Any]) -> Item:
        data = await self._call("PATCH", f"/api/v1/items/{item_id}", json=fields)
        return self._parse(Item, data)

    async def decrement_stock(self, item_id: int, quantity: int, key: Optional[str] = None) -> StockLevel:
        """With a `key`, a repeated call (after a lost response, say) takes nothing twice."""
        return await self._change_stock("decrement", item_id, quantity, key)

    async def increment_stock(self, item_id: int, quantity: int, key: Optional[str] = None) -> StockLevel:
        return await self._change_stock("increment", item_id, quantity, key)

    async def _change_stock(self, action: str, item_id: int, quantity: int, key: Optional[str]) -> StockLevel:
        body = {"quantity": quantity}
        if key:
            body["key"] = key
        data = await self._call("POST", f"/api/v1/items/{item_id}/{action}", json=body)
        return self._parse(StockLevel, data)

    async def delete_item(self, item_id: int) -> None:
        await self._call("DELETE", f"/api/v1/items/{item_id}")

    # --- transactions ---

    async def list_transactions(self, owner: str) -> List[Transaction]:
        data = await self._call("GET", "/api/v1/transactions", params={"owner": owner})
        return self._parse(Transaction, data)

    async def create_transaction(self, payload: Dict[str, Any]) -> Transaction:
        data = await self._call("POST", "/api/v1/transactions", json=payload)
        return self._parse(Transaction, data)
