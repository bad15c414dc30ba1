from graph_navigator.services.query_processor import ChatMessage, ChatRequest, QueryProcessor

__all__ = ["ChatMessage", "ChatRequest", "QueryProcessor"]
