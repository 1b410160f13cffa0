from .gemini_client import GeminiClient, parse_json_response

__all__ = ["GeminiClient", "parse_json_response"]
