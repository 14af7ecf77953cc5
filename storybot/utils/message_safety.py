from aiogram.types import Message

DEFAULT_SAFE_MESSAGE = "📬 Nothing to show right now."


async def safe_answer(message: Message, text: str, **kwargs):
    text = text.strip() if isinstance(text, str) else ""
    if not text:
        text = DEFAULT_SAFE_MESSAGE
    return await message.answer(text, **kwargs)


async def safe_edit(message: Message, text: str, **kwargs):
    text = text.strip() if isinstance(text, str) else ""
    if not text:
        text = DEFAULT_SAFE_MESSAGE
    return await message.edit_text(text, **kwargs)
