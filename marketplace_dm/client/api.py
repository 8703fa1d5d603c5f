"""
Messaging REST client
Thin async wrapper over the /api endpoints; HTTP failures come back as the
same error classes the server raises.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..errors import MessagingError, ValidationFailed, PermissionDenied, NotFound, TransportError
from ..schemas.messages import MessageOut, AttachmentDescriptor
from ..schemas.notifications import NotificationOut

logger = logging.getLogger(__name__)

# (filename, content, content_type)
UploadFileSpec = Tuple[str, bytes, str]

_STATUS_ERRORS = {
    400: ValidationFailed,
    413: ValidationFailed,
    422: ValidationFailed,
    403: PermissionDenied,
    404: NotFound,
}


def _error_from_response(response: httpx.Response) -> MessagingError:
    try:
        detail = response.json().get('detail', response.text)
    except ValueError:
        detail = response.text
    if not isinstance(detail, str):
        detail = str(detail)
    error_cls = _STATUS_ERRORS.get(response.status_code, MessagingError)
    return error_cls(detail, status_code=response.status_code)


class MessagingApiClient:
    """Async client for the messaging API, authenticated with a bearer token."""

    def __init__(self, base_url: str, token: str, transport: httpx.AsyncBaseTransport = None, timeout: float = 30.0):
        """
        Args:
            base_url: server origin, e.g. http://localhost:8000
            token: JWT issued for the signed-in user
            transport: optional httpx transport (ASGI transport in tests)
            timeout: request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=f'{self.base_url}/api',
            headers={'Authorization': f'Bearer {token}'},
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> 'MessagingApiClient':
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f'{method} {path} failed: {e}') from e
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    # messages

    async def list_all_messages(self) -> List[MessageOut]:
        data = await self._request('GET', '/messages', params={'type': 'all'})
        return [MessageOut.model_validate(m) for m in data]

    async def get_conversation(self, contact_id: int) -> List[MessageOut]:
        data = await self._request('GET', '/messages', params={'userId': contact_id})
        return [MessageOut.model_validate(m) for m in data]

    async def list_contacts(self) -> List[Dict[str, Any]]:
        return await self._request('GET', '/messages/contacts')

    async def unread_count(self) -> int:
        data = await self._request('GET', '/messages/unread/count')
        return data['count']

    async def send_message(
        self,
        receiver_id: int,
        content: str = '',
        reply_to_id: Optional[int] = None,
        attachments: Optional[Sequence[AttachmentDescriptor]] = None,
    ) -> MessageOut:
        body: Dict[str, Any] = {'receiverId': receiver_id, 'content': content}
        if reply_to_id is not None:
            body['replyToId'] = reply_to_id
        if attachments:
            body['attachments'] = [
                AttachmentDescriptor.model_validate(a).model_dump(by_alias=True) for a in attachments
            ]
        data = await self._request('POST', '/messages', json=body)
        return MessageOut.model_validate(data)

    async def mark_read(self, message_id: int) -> MessageOut:
        data = await self._request('PATCH', f'/messages/{message_id}/read')
        return MessageOut.model_validate(data)

    # attachments

    async def upload_attachment(self, file: UploadFileSpec) -> AttachmentDescriptor:
        data = await self._request('POST', '/uploads/attachment', files={'file': file})
        return AttachmentDescriptor(url=data['fileUrl'], type=data['fileType'], name=data['fileName'])

    async def upload_attachments(self, files: Sequence[UploadFileSpec]) -> List[AttachmentDescriptor]:
        data = await self._request('POST', '/uploads/attachments', files=[('files', f) for f in files])
        return [AttachmentDescriptor.model_validate(d) for d in data['files']]

    # notifications

    async def list_notifications(self) -> List[NotificationOut]:
        data = await self._request('GET', '/notifications')
        return [NotificationOut.model_validate(n) for n in data]

    async def notification_unread_count(self) -> int:
        data = await self._request('GET', '/notifications/unread/count')
        return data['count']

    async def get_user(self, user_id: int) -> Dict[str, Any]:
        return await self._request('GET', f'/users/{user_id}')
