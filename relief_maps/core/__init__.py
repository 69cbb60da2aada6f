"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Source dataset names, artifact filename templates
- exceptions: Custom exception hierarchy
- ingress: Request body decoding at the HTTP boundary
"""
