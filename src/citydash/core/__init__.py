"""Infrastructure: configuration, logging, persistence and the NGSI-LD engines."""
