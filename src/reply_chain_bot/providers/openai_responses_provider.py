import openai
from loguru import logger

from reply_chain_bot.provider import StatefulReply


class ResponsesConversation:
    """One server-side conversation on the OpenAI Responses API.

    History lives with OpenAI; each turn only names the response it
    continues (``previous_response_id``). The conversation id is the id of
    the first response in the thread and is carried forward untouched.
    """

    def __init__(self, client: openai.AsyncOpenAI, model: str):
        self._client = client
        self._model = model

    async def send(
        self,
        text: str,
        *,
        parent_message_id: str | None = None,
        conversation_id: str | None = None,
    ) -> StatefulReply:
        kwargs: dict = dict(model=self._model, input=text, store=True)
        if parent_message_id:
            kwargs["previous_response_id"] = parent_message_id

        logger.debug(
            f"Responses request: model={self._model}, "
            f"previous_response_id={parent_message_id}, conversation={conversation_id}"
        )
        response = await self._client.responses.create(**kwargs)
        logger.debug(f"Responses response: id={response.id}")

        return StatefulReply(
            text=response.output_text or "",
            message_id=response.id,
            conversation_id=conversation_id or response.id,
        )


class OpenAIResponsesProvider:
    def __init__(self, api_key: str, model: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model

    def open_conversation(self) -> ResponsesConversation:
        return ResponsesConversation(self._client, self._model)
