"""FME Flow API client.

- errors: FmeFlowApiError and error codes
- builder: URL, query, and job body construction
- registry: per-host token interceptors
- cancellation: cancel tokens and keyed abort registry
- transport: transport contract and httpx implementation
- instrument: request logging and URL redaction
- queue: serialized setup/teardown queue
- client: FmeFlowApiClient
"""
