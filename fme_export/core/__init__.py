"""Core utilities and shared infrastructure.

- config: Client and AOI configuration loading and validation
- constants: Named constants, parameter key sets, endpoint roots
- exceptions: Shared exception hierarchy
"""
