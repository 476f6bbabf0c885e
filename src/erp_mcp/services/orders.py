"""Order-lookup collaborator: asks the ERP verification endpoint whether an order exists."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from erp_mcp.errors import UpstreamClientError, UpstreamServerError
from erp_mcp.services.http import HttpClientFactory, create_http_client, parse_json, send_upstream
from erp_mcp.services.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_LENGTH = 50


class Customer(BaseModel):
    model_config = ConfigDict(extra="allow")

    imie: str
    nazwisko: str
    email: str


class OrderDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    id_zamowienia: str
    numer_zamowienia: str
    status: str
    wartosc_calkowita: float
    klient: Customer


class OrderVerificationPayload(BaseModel):
    """Body returned by the verification endpoint."""

    model_config = ConfigDict(extra="allow")

    zamowienieIstnieje: bool
    daneZamowienia: OrderDetails | None = None

    @model_validator(mode="after")
    def _details_present_when_found(self) -> OrderVerificationPayload:
        if self.zamowienieIstnieje and self.daneZamowienia is None:
            raise ValueError("order exists but details are missing")
        return self


@dataclass(frozen=True)
class OrderLookup:
    exists: bool
    details: OrderDetails | None = None


class OrderLookupService(Protocol):
    async def verify(self, order_number: str, auth_token: str | None = None) -> OrderLookup: ...


class OrderClient:
    """httpx client for the order verification endpoint.

    Timeouts, rate limiting and server errors are retried according to
    ``retry_policy``; authorization and other client errors surface at once.
    """

    def __init__(
        self,
        url: str,
        bearer_token: str,
        *,
        timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ) -> None:
        self.url = url
        self.bearer_token = bearer_token
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._http_client_factory = http_client_factory

    async def verify(self, order_number: str, auth_token: str | None = None) -> OrderLookup:
        order_number = order_number.strip()
        if not order_number:
            raise UpstreamClientError("Order number must not be empty", 400)
        if len(order_number) > MAX_ORDER_NUMBER_LENGTH:
            raise UpstreamClientError(f"Order number is too long (max {MAX_ORDER_NUMBER_LENGTH} characters)", 400)

        token = auth_token or self.bearer_token
        payload = await call_with_retry(lambda: self._request(order_number, token), self.retry_policy)
        return OrderLookup(exists=payload.zamowienieIstnieje, details=payload.daneZamowienia)

    async def _request(self, order_number: str, token: str) -> OrderVerificationPayload:
        async with self._http_client_factory(timeout=self.timeout) as client:
            request = client.build_request(
                "POST",
                self.url,
                json={"numer_zamowienia": order_number},
                headers={"Authorization": f"Bearer {token}"},
            )
            logger.debug(f"Verifying order {order_number}")
            response = await send_upstream(client, request, self.timeout)

        try:
            payload = OrderVerificationPayload.model_validate(parse_json(response))
        except ValidationError as e:
            raise UpstreamServerError("Invalid response format from the order API") from e

        if not payload.zamowienieIstnieje:
            # Existence is authoritative; stray details on a miss are dropped.
            return OrderVerificationPayload(zamowienieIstnieje=False)
        return payload
