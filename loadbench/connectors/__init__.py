"""Protocol clients used by scenario bodies."""

from loadbench.connectors.http_client import FormField, HttpClient, HttpResponse
from loadbench.connectors.browser_client import BrowserClient, BrowserPage

__all__ = ["FormField", "HttpClient", "HttpResponse", "BrowserClient", "BrowserPage"]
