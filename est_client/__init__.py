"""EST Client - Enrollment over Secure Transport (RFC 7030) client.

Retrieves CA certificates, enrolls new certificates and renews existing
ones under HTTP, SRP or TLS client certificate authentication.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("est-client")
except PackageNotFoundError:
    # Not installed (e.g. running from a source checkout)
    __version__ = "0.0.0"
