"""OAuth 2.1 authorization server and gateway authentication."""
