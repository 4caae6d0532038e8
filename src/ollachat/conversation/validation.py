from .models import ChatTranscript


def check_transcripts(transcripts: list[ChatTranscript]) -> None:
    """Validate transcripts before a wholesale replace.

    Raises:
        ValueError: On duplicate chat or message ids, a message whose
            ``chat_id`` differs from its transcript's chat, or a repeated
            sequence number within a chat
    """
    chat_ids: set[str] = set()
    message_ids: set[str] = set()
    for transcript in transcripts:
        chat_id = transcript.chat.id
        if chat_id in chat_ids:
            raise ValueError(f"Duplicate chat id: {chat_id}")
        chat_ids.add(chat_id)

        sequences: set[int] = set()
        for message in transcript.messages:
            if message.chat_id != chat_id:
                raise ValueError(f"Message {message.id} belongs to chat {message.chat_id}, not {chat_id}")
            if message.id in message_ids:
                raise ValueError(f"Duplicate message id: {message.id}")
            if message.sequence in sequences:
                raise ValueError(f"Duplicate sequence {message.sequence} in chat {chat_id}")
            message_ids.add(message.id)
            sequences.add(message.sequence)
