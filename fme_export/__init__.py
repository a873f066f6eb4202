"""FME Flow export client.

Submits a drawn area of interest and form parameters to an FME Flow
server as a job, either through the REST transformation API or through
the data download / data streaming webhooks, and returns a normalized
result or a typed error.
"""

__version__ = "0.1.0"
