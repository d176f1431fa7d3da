from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from botocore.exceptions import ClientError

from vpc_inventory.auth.providers import AuthContext


def client_error(code: str, operation: str = "DescribeVpcs", message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def paged(
    result_key: str,
    pages: Sequence[List[Dict[str, Any]]],
    *,
    token_key: str = "NextToken",
    output_token_key: Optional[str] = None,
) -> Callable[..., Dict[str, Any]]:
    """Handler serving pages[i] for token str(i); the last page carries no token."""
    out_key = output_token_key or token_key

    def handler(**kwargs: Any) -> Dict[str, Any]:
        idx = int(kwargs.get(token_key) or 0)
        resp: Dict[str, Any] = {result_key: list(pages[idx])}
        if idx + 1 < len(pages):
            resp[out_key] = str(idx + 1)
        return resp

    return handler


# response token -> request parameter, as botocore paginators map them
NEXT_TOKEN_PARAMS = {"NextToken": "NextToken", "Marker": "Marker", "NextMarker": "Marker"}


class FakePaginator:
    def __init__(self, client: "FakeClient", operation: str) -> None:
        self._client = client
        self._operation = operation

    def paginate(self, **kwargs: Any) -> Iterator[Dict[str, Any]]:
        call = getattr(self._client, self._operation)
        params = dict(kwargs)
        while True:
            page = call(**params) or {}
            yield page
            for out_key, in_key in NEXT_TOKEN_PARAMS.items():
                if page.get(out_key):
                    params = dict(kwargs, **{in_key: page[out_key]})
                    break
            else:
                return


class FakeClient:
    """
    boto3-client stand-in. Each keyword maps an operation name to a response
    dict, a callable(**kwargs) or an exception instance to raise. get_paginator
    follows NextToken, Marker or NextMarker through the same operations.
    """

    def __init__(self, **operations: Any) -> None:
        self._operations = operations
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name.startswith("_") or name not in self._operations:
            raise AttributeError(name)
        handler = self._operations[name]

        def _call(**kwargs: Any) -> Any:
            with self._lock:
                self.calls.append((name, kwargs))
            if isinstance(handler, BaseException):
                raise handler
            if callable(handler):
                return handler(**kwargs)
            return handler

        return _call

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def get_paginator(self, operation: str) -> FakePaginator:
        return FakePaginator(self, operation)


class FakeCredentials:
    """CredentialStrategy stand-in serving clients by service (or (service, region))."""

    def __init__(self, clients: Dict[Any, Any], role_arn: Optional[str] = None) -> None:
        self._clients = clients
        self.role_arn = role_arn

    @property
    def delegated(self) -> bool:
        return self.role_arn is not None

    @property
    def label(self) -> str:
        return self.role_arn or "current-account"

    def client(self, service: str, region: str) -> Any:
        if (service, region) in self._clients:
            return self._clients[(service, region)]
        return self._clients[service]


class FakeSession:
    """
    boto3.Session stand-in. client() looks up (service, region) first, then service.
    Every instance built through FakeSessionFactory is recorded there.
    """

    def __init__(self, clients: Optional[Dict[Any, Any]] = None, credentials: Any = "creds", **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.clients = clients or {}
        self._credentials = credentials
        self.client_calls: List[Tuple[str, Optional[str]]] = []

    def get_credentials(self) -> Any:
        return self._credentials

    def client(self, service: str, region_name: Optional[str] = None, config: Any = None) -> Any:
        self.client_calls.append((service, region_name))
        if (service, region_name) in self.clients:
            return self.clients[(service, region_name)]
        if service in self.clients:
            return self.clients[service]
        raise AssertionError(f"unexpected client {service} in {region_name}")


class FakeSessionFactory:
    def __init__(self, clients: Optional[Dict[Any, Any]] = None) -> None:
        self.clients = clients or {}
        self.created: List[FakeSession] = []

    def __call__(self, **kwargs: Any) -> FakeSession:
        session = FakeSession(self.clients, **kwargs)
        self.created.append(session)
        return session


def make_ctx(
    clients: Optional[Dict[Any, Any]] = None,
    *,
    delegated_clients: Optional[Dict[Any, Any]] = None,
    region: str = "us-east-1",
) -> AuthContext:
    return AuthContext(
        session=FakeSession(clients or {}),
        profile=None,
        bootstrap_region=region,
        session_factory=FakeSessionFactory(delegated_clients or {}),
    )


def assume_role_response(key: str = "AKIA") -> Dict[str, Any]:
    return {"Credentials": {"AccessKeyId": key, "SecretAccessKey": "s", "SessionToken": "t"}}
