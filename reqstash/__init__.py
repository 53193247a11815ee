"""reqstash - saved HTTP requests with environments and response chaining."""

__version__ = "0.1.0"
