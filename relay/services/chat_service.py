"""Chat and conversation calls routed through the dispatcher.

Only :meth:`ChatService.send_message` is queueable: a message typed while
offline is persisted and delivered later, and the caller receives
:class:`~relay.errors.QueuedForLater` instead of a reply.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from relay.errors import DispatchError
from relay.errors import ServerError
from relay.models.enums import HttpMethod
from relay.models.enums import TimeoutClass
from relay.schemas.schemas import ChatReply
from relay.schemas.schemas import Conversation
from relay.schemas.schemas import Operation
from relay.schemas.schemas import Response
from relay.services.dispatcher import RequestDispatcher

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"


def _data(resp: Response, fallback_message: str) -> Any:
    if resp.body is None:
        raise ServerError(resp.status_code, fallback_message)
    return resp.data


class ChatService:
    def __init__(self, dispatcher: RequestDispatcher, *, model: str = DEFAULT_MODEL):
        self._dispatcher = dispatcher
        self._model = model

    @staticmethod
    def build_message_operation(
        message: str,
        conversation_id: Optional[str] = None,
        model: str = DEFAULT_MODEL,
    ) -> Operation:
        body: Dict[str, Any] = {"message": message, "model": model}
        if conversation_id is not None:
            body["conversationId"] = conversation_id
        return Operation(method=HttpMethod.POST, path="/ai/chat", body=body, queueable=True)

    async def send_message(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatReply:
        resp = await self._dispatcher.execute(
            self.build_message_operation(message, conversation_id, model or self._model)
        )
        return ChatReply.model_validate(_data(resp, "Empty response from server"))

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def list_conversations(self) -> List[Conversation]:
        resp = await self._dispatcher.execute(Operation(method=HttpMethod.GET, path="/conversations"))
        data = resp.data or []
        if isinstance(data, dict):
            data = data.get("conversations", [])
        return [Conversation.model_validate(item) for item in data]

    async def get_conversation(self, conversation_id: str) -> Conversation:
        resp = await self._dispatcher.execute(
            Operation(method=HttpMethod.GET, path=f"/conversations/{conversation_id}")
        )
        return Conversation.model_validate(_data(resp, "Conversation not found"))

    async def create_conversation(self) -> Conversation:
        resp = await self._dispatcher.execute(Operation(method=HttpMethod.POST, path="/conversations", body={}))
        return Conversation.model_validate(_data(resp, "Failed to create conversation"))

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        await self._dispatcher.execute(
            Operation(method=HttpMethod.PATCH, path=f"/conversations/{conversation_id}", body={"title": title})
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._dispatcher.execute(
            Operation(method=HttpMethod.DELETE, path=f"/conversations/{conversation_id}")
        )

    # ------------------------------------------------------------------
    # Jobs & suggestions
    # ------------------------------------------------------------------

    async def list_jobs(self, page: int = 1, limit: int = 20) -> List[Dict[str, Any]]:
        resp = await self._dispatcher.execute(
            Operation(method=HttpMethod.GET, path="/ai/jobs", params={"page": page, "limit": limit})
        )
        return list(resp.data or [])

    async def get_job(self, job_id: str) -> Dict[str, Any]:
        resp = await self._dispatcher.execute(Operation(method=HttpMethod.GET, path=f"/ai/jobs/{job_id}"))
        return _data(resp, "AI job not found")

    async def suggestions(self, last_message: str, last_response: Optional[str] = None) -> List[str]:
        """Follow-up prompts; optional, so failures yield an empty list."""

        body = {"lastMessage": last_message}
        if last_response is not None:
            body["lastResponse"] = last_response
        try:
            resp = await self._dispatcher.execute(Operation(method=HttpMethod.POST, path="/ai/suggestions", body=body))
        except DispatchError as e:
            logger.debug("Suggestions unavailable: %s", e)
            return []

        data = resp.data if isinstance(resp.data, dict) else {}
        return [str(item) for item in data.get("suggestions") or []]

    # ------------------------------------------------------------------
    # Media analysis
    # ------------------------------------------------------------------

    async def analyze_image(
        self,
        conversation_id: str,
        message: str,
        image_base64: str,
        mime_type: str = "image/jpeg",
    ) -> ChatReply:
        return await self._analyze(
            "/ai/analyze-image",
            {
                "conversationId": conversation_id,
                "message": message,
                "image": image_base64,
                "mimeType": mime_type,
            },
        )

    async def analyze_video(
        self,
        conversation_id: str,
        message: str,
        video_base64: str,
        mime_type: str = "video/mp4",
    ) -> ChatReply:
        return await self._analyze(
            "/ai/analyze-video",
            {
                "conversationId": conversation_id,
                "message": message,
                "video": video_base64,
                "mimeType": mime_type,
            },
        )

    async def _analyze(self, path: str, body: Dict[str, Any]) -> ChatReply:
        resp = await self._dispatcher.execute(
            Operation(method=HttpMethod.POST, path=path, body=body, timeout_class=TimeoutClass.MEDIA)
        )
        return ChatReply.model_validate(_data(resp, "Media analysis failed"))
