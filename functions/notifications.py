"""
Remote function calls and best-effort notifications.

Email notifications (welcome, submission, processing complete) and checkout
session creation run in separate callable functions. They are invoked over the
callable protocol: POST {base_url}/{name} with {"data": payload}, the answer
comes back under "result" and carries a 'success' flag.
"""
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from config import HTTP_TIMEOUT, get_functions_base_url
from errors import AuthError, TransientError


class FunctionsClient:
    """Invokes named callable functions."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        id_token_provider: Optional[Callable[[], Optional[str]]] = None
    ):
        self.base_url = (base_url or get_functions_base_url()).rstrip('/')
        self.http_client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)
        self.id_token_provider = id_token_provider

    def call(self, name: str, payload: Dict[str, Any]) -> Any:
        """
        Invoke one function.

        Args:
            name: Function name (e.g., 'sendProcessingCompleteNotification')
            payload: JSON-serializable arguments

        Returns:
            Any: The function result

        Raises:
            AuthError: If the function rejected the caller
            TransientError: On network failure, an error response or success=False
        """
        headers = {'Content-Type': 'application/json'}
        id_token = self.id_token_provider() if self.id_token_provider else None
        if id_token:
            headers['Authorization'] = f"Bearer {id_token}"

        try:
            response = self.http_client.post(f"{self.base_url}/{name}", json={'data': payload}, headers=headers)
        except httpx.HTTPError as e:
            raise TransientError(f"Function {name} unreachable: {str(e)}", e)

        if response.status_code in (401, 403):
            raise AuthError('permission-denied', f"Function {name} rejected the request ({response.status_code})")
        if response.status_code >= 400:
            raise TransientError(f"Function {name} failed with status {response.status_code}")

        try:
            body = response.json() if response.content else {}
        except ValueError:
            raise TransientError(f"Function {name} returned a malformed response")
        if isinstance(body, dict) and body.get('error'):
            error = body['error']
            message = error.get('message') if isinstance(error, dict) else str(error)
            raise TransientError(f"Function {name} returned an error: {message}")

        result = body.get('result', body) if isinstance(body, dict) else body
        if isinstance(result, dict) and result.get('success') is False:
            raise TransientError(f"Function {name} reported failure: {result.get('message', 'unknown error')}")
        return result

    def call_first(self, names: Sequence[str], payload: Dict[str, Any]) -> Tuple[str, Any]:
        """
        Try candidate functions in order until one succeeds.

        Args:
            names: Candidate function names, primary first
            payload: Arguments sent to every candidate

        Returns:
            tuple: (name of the function that succeeded, its result)

        Raises:
            TransientError: If every candidate failed
        """
        if not names:
            raise TransientError("No candidate functions configured")

        last_error = None
        for name in names:
            try:
                print(f"Trying function: {name}")
                result = self.call(name, payload)
                print(f"Function {name} succeeded")
                return name, result
            except (AuthError, TransientError) as e:
                last_error = e
                print(f"Function {name} failed: {e.message}")

        raise TransientError(f"All candidate functions failed: {', '.join(names)}", last_error)


class BestEffortDispatcher:
    """
    Outbox for side-effect notifications that must never fail the caller.

    Messages are posted while the primary operation runs and delivered by
    drain() once it has finished. Delivery failures go to `failures` and the
    log, never to the caller.
    """

    def __init__(self, functions_client: Optional[FunctionsClient] = None):
        self.functions_client = functions_client
        self.outbox = deque()
        self.failures: List[Dict[str, Any]] = []

    def post(self, name: str, payload: Dict[str, Any]) -> None:
        self.outbox.append((name, payload))

    def drain(self) -> int:
        """
        Deliver every queued message.

        Returns:
            int: Number of messages delivered successfully
        """
        delivered = 0
        while self.outbox:
            name, payload = self.outbox.popleft()
            if self.functions_client is None:
                self.failures.append({'name': name, 'message': 'No functions client configured'})
                continue
            try:
                self.functions_client.call(name, payload)
                delivered += 1
            except Exception as e:
                # Notifications are best effort
                print(f"Notification {name} failed: {str(e)}")
                self.failures.append({'name': name, 'message': str(e)})
        return delivered
