"""Query embedding providers."""
