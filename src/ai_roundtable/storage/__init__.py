"""Conversation persistence -- SQLite conversations and responses tables."""
from .models import Conversation, ConversationResponse, ConversationSummary
from .schema import get_connection, initialize_schema
from .store import ConversationStore, DuplicateResponseError
