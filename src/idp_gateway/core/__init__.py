"""Core building blocks: configuration, results, security and OAuth2 engine."""
