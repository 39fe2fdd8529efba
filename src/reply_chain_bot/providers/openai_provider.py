import openai
from loguru import logger


class OpenAIProvider:
    def __init__(self, api_key: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        """Chat completion over the whole rebuilt transcript."""
        logger.debug(f"OpenAI request: model={model}, messages={len(messages)}")
        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
        )
        choice = response.choices[0] if response.choices else None
        text = (choice.message.content if choice is not None else None) or ""
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"OpenAI response: finish_reason={choice.finish_reason if choice else None}, "
                f"prompt_tokens={usage.prompt_tokens}, completion_tokens={usage.completion_tokens}"
            )
        return text
