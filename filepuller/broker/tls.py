"""
Mutual TLS context for the broker connection.
"""

import logging
import ssl

from filepuller.constants import ExitCode
from filepuller.errors import ProvisioningError

logger = logging.getLogger(__name__)


def load_tls_context(ca_file: str, key_file: str, cert_file: str) -> ssl.SSLContext:
    """
    Build a client TLS context that verifies the broker against `ca_file`
    and presents the client certificate from `cert_file` / `key_file`.

    Args:
        ca_file: PEM bundle of trusted certificate authorities.
        key_file: PEM client private key.
        cert_file: PEM client certificate.

    Returns:
        ssl.SSLContext: Context ready to pass to the broker client.

    Raises:
        ProvisioningError: If any of the files cannot be read or parsed.
    """
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

    try:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ssl.SSLError) as e:
        raise ProvisioningError(
            "tls",
            ExitCode.TLS,
            f"Unable to load x509 keypair ({cert_file}, {key_file}): {e}",
        ) from e
    logger.info("Loaded client certificate", extra={"cert_file": cert_file})

    try:
        context.load_verify_locations(cafile=ca_file)
    except (OSError, ssl.SSLError) as e:
        raise ProvisioningError(
            "tls",
            ExitCode.TLS,
            f"Unable to load CA certificate at {ca_file}: {e}",
        ) from e
    logger.info("Loaded CA bundle", extra={"ca_file": ca_file})

    return context
