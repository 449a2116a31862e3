"""Asyncio DHCP client and server, captive-portal DNS responder and UDP socket."""

__version__ = "0.13.1"

__all__ = [
    "udp",
    "captive",
    "dhcp_options",
    "dhcp_packet",
    "dhcp_client",
    "dhcp_server",
    "dhcp_io",
]