from .http import ApiClient, auth_headers

__all__ = ["ApiClient", "auth_headers"]
