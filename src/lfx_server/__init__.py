"""LFX server: gateway for the LFX resource API, NATS and Snowflake."""

__version__ = "0.1.0"
