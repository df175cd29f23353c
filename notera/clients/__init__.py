from notera.clients.auth_client import AuthClient, AuthUser, bearer_token
from notera.clients.functions_client import ProcessingDispatcher
from notera.clients.gemini_client import GeminiClient

__all__ = ["AuthClient", "AuthUser", "GeminiClient", "ProcessingDispatcher", "bearer_token"]
