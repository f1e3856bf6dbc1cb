from .gmb_client import GMBClient, RECONNECT_MARKER, parse_timestamp, rating_to_number

__all__ = ["GMBClient", "RECONNECT_MARKER", "parse_timestamp", "rating_to_number"]
